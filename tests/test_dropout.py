"""
Tests for dropout probability estimation and biological-zero rollback.
"""

import numpy as np
import pytest
from scipy.special import digamma

from dropimpute.core.quality import QualityFlag
from dropimpute.exceptions import InvalidInputError, ShapeMismatchError
from dropimpute.imputation.baseline import impute_baseline
from dropimpute.quality.validation import validate_matrix
from dropimpute.quality.dropout import (
    DropoutClassifier,
    MixtureParameters,
    _gamma_shape,
    estimate_dropout_probabilities,
    fit_gamma_normal_mixture,
    set_biological_zeros,
)


@pytest.fixture
def imputed_small(small_counts):
    return small_counts.with_data(impute_baseline(small_counts))


class TestRollback:

    def test_threshold_zero_changes_nothing(self, small_counts, imputed_small):
        probs = np.random.default_rng(0).random(small_counts.shape)
        result = set_biological_zeros(imputed_small, probs, 0.0, small_counts.data == 0)
        np.testing.assert_array_equal(result.data, imputed_small.data)

    def test_threshold_one_zeroes_every_uncertain_zero(self, small_counts, imputed_small):
        probs = np.random.default_rng(1).random(small_counts.shape)
        probs[0, :] = 1.0
        was_zero = small_counts.data == 0

        result = set_biological_zeros(imputed_small, probs, 1.0, was_zero)

        expected_zero = was_zero & (probs < 1.0)
        assert np.all(result.data[expected_zero] == 0)
        # probability exactly 1 is never rolled back
        np.testing.assert_array_equal(result.data[0], imputed_small.data[0])

    def test_half_probabilities_survive_low_threshold(self, small_counts, imputed_small):
        probs = np.full(small_counts.shape, 0.5)
        result = set_biological_zeros(imputed_small, probs, 0.2, small_counts.data == 0)
        np.testing.assert_array_equal(result.data, imputed_small.data)

    def test_only_original_zeros_change(self, small_counts, imputed_small):
        probs = np.zeros(small_counts.shape)
        was_zero = small_counts.data == 0

        result = set_biological_zeros(imputed_small, probs, 0.5, was_zero)

        changed = result.data != imputed_small.data
        assert changed.any()
        assert not np.any(changed & ~was_zero)

    def test_nan_probability_never_rolls_back(self, small_counts, imputed_small):
        probs = np.full(small_counts.shape, np.nan)
        result = set_biological_zeros(imputed_small, probs, 1.0, small_counts.data == 0)
        np.testing.assert_array_equal(result.data, imputed_small.data)

    def test_flags(self, sparse_matrix):
        imputed = sparse_matrix.with_data(sparse_matrix.data + 1.0)
        flags = imputed.quality_flags.copy()
        flags[sparse_matrix.data == 0] |= QualityFlag.IMPUTED
        imputed = imputed.with_data(imputed.data, quality_flags=flags)

        result = set_biological_zeros(
            imputed, np.zeros(sparse_matrix.shape), 0.5, sparse_matrix.data == 0
        )
        rolled = result.flagged(QualityFlag.BIOLOGICAL_ZERO)
        np.testing.assert_array_equal(rolled, sparse_matrix.data == 0)
        assert not np.any(result.flagged(QualityFlag.IMPUTED))

    @pytest.mark.parametrize("threshold", [-0.1, 1.01])
    def test_threshold_out_of_range(self, small_counts, imputed_small, threshold):
        with pytest.raises(InvalidInputError):
            set_biological_zeros(
                imputed_small, np.zeros(small_counts.shape), threshold, small_counts.data == 0
            )

    def test_shape_mismatch(self, small_counts, imputed_small):
        with pytest.raises(ShapeMismatchError):
            set_biological_zeros(imputed_small, np.zeros((2, 2)), 0.5, small_counts.data == 0)
        with pytest.raises(ShapeMismatchError):
            set_biological_zeros(
                imputed_small, np.zeros(small_counts.shape), 0.5, np.zeros((2, 2), dtype=bool)
            )


class TestDropoutProbabilities:

    def test_range_and_shape(self, medium_counts):
        probs = estimate_dropout_probabilities(medium_counts)

        assert probs.shape == medium_counts.shape
        assert np.all((probs >= 0) & (probs <= 1))

    def test_non_zero_entries_are_one(self, medium_counts):
        probs = estimate_dropout_probabilities(medium_counts)
        assert np.all(probs[medium_counts.data > 0] == 1.0)

    def test_genes_without_evidence_get_zero(self, sparse_matrix):
        probs = estimate_dropout_probabilities(sparse_matrix)

        # C is silent, D has a single distinct positive value
        assert np.all(probs[2] == 0.0)
        assert probs[3, 2] == 0.0

    def test_nan_entries_stay_nan(self):
        matrix = validate_matrix(
            np.array([[0.0, np.nan, 3.0, 7.0, 0.0, 12.0]]), gene_ids=["g"]
        )
        probs = estimate_dropout_probabilities(matrix)
        assert np.isnan(probs[0, 1])
        assert probs[0, 2] == 1.0

    def test_parallel_matches_sequential(self, small_counts):
        seq = estimate_dropout_probabilities(small_counts, n_workers=1)
        par = estimate_dropout_probabilities(small_counts, n_workers=4)
        np.testing.assert_array_equal(seq, par)

    def test_pseudo_count_must_exceed_one(self, small_counts):
        with pytest.raises(InvalidInputError):
            estimate_dropout_probabilities(small_counts, pseudo_count=1.0)


class TestMixture:

    def test_gamma_shape_solves_equation(self):
        for v in (0.05, 0.3, 1.0, 2.5):
            a = _gamma_shape(v)
            if a < 20:
                assert np.log(a) - digamma(a) == pytest.approx(v, abs=1e-6)

    def test_gamma_shape_cap(self):
        assert _gamma_shape(0.0) == 20.0
        assert _gamma_shape(1e-4) == 20.0

    def test_fit_recovers_dropout_rate(self):
        rng = np.random.default_rng(3)
        expressed = rng.lognormal(mean=3.0, sigma=0.4, size=300)
        counts = np.concatenate([np.zeros(200), expressed])
        point = np.log10(1.01)

        params = fit_gamma_normal_mixture(np.log10(counts + 1.01), point)

        assert isinstance(params, MixtureParameters)
        assert 0.3 < params.rate < 0.5
        assert params.mu > 1.0
        assert params.n_iter >= 1

    def test_fit_needs_two_expressed_values(self):
        with pytest.raises(InvalidInputError):
            fit_gamma_normal_mixture(np.log10(np.array([0.0, 0.0, 5.0]) + 1.01), np.log10(1.01))


class TestClassifier:

    def test_apply_estimates_probabilities(self, small_counts, imputed_small):
        classifier = DropoutClassifier(threshold=0.5)
        result = classifier.apply(imputed_small, small_counts)

        changed = result.data != imputed_small.data
        assert not np.any(changed & (small_counts.data != 0))

    def test_apply_with_given_probabilities(self, small_counts, imputed_small):
        classifier = DropoutClassifier(threshold=0.2)
        probs = np.full(small_counts.shape, 0.5)
        result = classifier.apply(imputed_small, small_counts, probabilities=probs)
        np.testing.assert_array_equal(result.data, imputed_small.data)

    def test_invalid_threshold(self):
        with pytest.raises(InvalidInputError):
            DropoutClassifier(threshold=2.0)
