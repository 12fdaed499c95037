"""
Tests for the Masker: only positive entries are hidden, reproducibly.
"""

import numpy as np
import pytest

from dropimpute.core.quality import QualityFlag
from dropimpute.evaluation.masking import Masker, mask_matrix
from dropimpute.exceptions import InvalidInputError


class TestMaskContract:

    def test_masked_entries_were_positive(self, medium_counts):
        result = mask_matrix(medium_counts, probability=0.5, seed=0)

        assert result.n_masked > 0
        assert np.all(result.original.data[result.mask] > 0)

    def test_masked_entries_are_zero_and_flagged(self, medium_counts):
        result = mask_matrix(medium_counts, probability=0.3, seed=1)

        assert np.all(result.masked.data[result.mask] == 0)
        assert np.all(result.masked.flagged(QualityFlag.MASKED) == result.mask)

    def test_unmasked_entries_untouched(self, medium_counts):
        result = mask_matrix(medium_counts, probability=0.3, seed=2)
        np.testing.assert_array_equal(
            result.masked.data[~result.mask], medium_counts.data[~result.mask]
        )

    def test_original_snapshot_is_independent(self, small_counts):
        result = mask_matrix(small_counts, probability=0.2, seed=3)
        np.testing.assert_array_equal(result.original.data, small_counts.data)
        assert result.original.data is not small_counts.data

    def test_probability_one_masks_every_positive_entry(self, sparse_matrix):
        result = mask_matrix(sparse_matrix, probability=1.0, seed=0)

        np.testing.assert_array_equal(result.mask, sparse_matrix.data > 0)
        assert np.all(result.masked.data == 0)

    def test_silent_gene_has_empty_mask_row(self, sparse_matrix):
        result = mask_matrix(sparse_matrix, probability=1.0)

        assert result.unmasked_genes == ["C"]
        assert result.n_masked_per_gene["C"] == 0
        assert result.n_masked_per_gene["D"] == 4


class TestReproducibility:

    def test_same_seed_same_mask(self, medium_counts):
        a = mask_matrix(medium_counts, probability=0.2, seed=11)
        b = mask_matrix(medium_counts, probability=0.2, seed=11)
        np.testing.assert_array_equal(a.mask, b.mask)

    def test_different_seed_different_mask(self, medium_counts):
        a = mask_matrix(medium_counts, probability=0.2, seed=11)
        b = mask_matrix(medium_counts, probability=0.2, seed=12)
        assert not np.array_equal(a.mask, b.mask)

    def test_masked_fraction_close_to_probability(self, medium_counts):
        result = mask_matrix(medium_counts, probability=0.25, seed=5)
        fraction = result.n_masked / int((medium_counts.data > 0).sum())
        assert abs(fraction - 0.25) < 0.03


class TestParameters:

    @pytest.mark.parametrize("p", [0.0, -0.1, 1.5])
    def test_invalid_probability(self, small_counts, p):
        with pytest.raises(InvalidInputError):
            mask_matrix(small_counts, probability=p)

    def test_masker_wraps_function(self, small_counts):
        masker = Masker(probability=0.2, seed=4)
        np.testing.assert_array_equal(
            masker.apply(small_counts).mask,
            mask_matrix(small_counts, 0.2, seed=4).mask,
        )

    def test_masker_validates_probability(self):
        with pytest.raises(InvalidInputError):
            Masker(probability=0)
