"""
Tests for the built-in Baseline and Network imputation methods.
"""

import numpy as np
import pandas as pd
import pytest

from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.exceptions import InvalidInputError
from dropimpute.imputation.base import ImputationContext
from dropimpute.imputation.baseline import BaselineImputer, gene_means, impute_baseline
from dropimpute.imputation.network import (
    NetworkImputer,
    NetworkModel,
    coerce_models,
    impute_network,
    models_from_coefficients,
)


class TestBaseline:

    def test_gene_means_over_positive_entries(self, sparse_matrix):
        means = gene_means(sparse_matrix)
        np.testing.assert_allclose(means, [4.0, 2.0, 0.0, 5.0])

    def test_zeros_replaced_positives_kept(self, sparse_matrix):
        imputed = impute_baseline(sparse_matrix)

        np.testing.assert_allclose(imputed[0], [4.0, 2.0, 4.0, 4.0, 6.0])
        np.testing.assert_allclose(imputed[1], [1.0, 2.0, 2.0, 3.0, 2.0])

    def test_silent_gene_stays_zero(self, sparse_matrix):
        imputed = impute_baseline(sparse_matrix)
        assert np.all(imputed[2] == 0)

    def test_nan_entries_filled(self):
        from dropimpute.quality.validation import validate_matrix

        matrix = validate_matrix(np.array([[2.0, np.nan, 4.0]]), gene_ids=["a"])
        np.testing.assert_allclose(impute_baseline(matrix), [[2.0, 3.0, 4.0]])

    def test_input_not_modified(self, sparse_matrix):
        before = sparse_matrix.data.copy()
        impute_baseline(sparse_matrix)
        np.testing.assert_array_equal(sparse_matrix.data, before)

    def test_means_override_series(self, sparse_matrix):
        means = pd.Series({"A": 1.0, "B": 1.0, "C": 9.0, "D": 1.0})
        imputed = impute_baseline(sparse_matrix, means=means)
        np.testing.assert_allclose(imputed[2], [9.0] * 5)

    def test_means_override_missing_gene(self, sparse_matrix):
        with pytest.raises(InvalidInputError, match="missing"):
            impute_baseline(sparse_matrix, means=pd.Series({"A": 1.0}))

    def test_means_override_wrong_length(self, sparse_matrix):
        with pytest.raises(InvalidInputError):
            impute_baseline(sparse_matrix, means=np.ones(3))

    def test_imputer_reads_context(self, sparse_matrix):
        context = ImputationContext(params={"gene_means": np.full(4, 7.0)})
        imputed = BaselineImputer().impute(sparse_matrix, context)
        assert imputed[2, 0] == 7.0
        assert BaselineImputer().name == "baseline"


class TestNetworkModels:

    def test_model_validation(self):
        with pytest.raises(InvalidInputError, match="coefficients"):
            NetworkModel("A", ("B", "D"), [1.0])

    def test_non_finite_coefficients(self):
        with pytest.raises(InvalidInputError):
            NetworkModel("A", ("B",), [np.nan])

    def test_models_from_coefficients(self):
        table = pd.DataFrame(
            {"intercept": [0.5, 0.0, 0.0], "A": [0.0, 2.0, 0.0], "B": [1.0, 0.0, 0.0]},
            index=["A", "B", "C"],
        )
        models = models_from_coefficients(table)

        assert set(models) == {"A", "B"}
        assert models["A"].predictors == ("B",)
        assert models["A"].intercept == 0.5
        np.testing.assert_allclose(models["B"].coefficients, [2.0])

    def test_self_loops_ignored(self):
        table = pd.DataFrame({"A": [3.0]}, index=["A"])
        assert models_from_coefficients(table) == {}

    def test_coerce_tuple_mapping(self):
        models = coerce_models({"A": (["B"], [0.5], 1.0)})
        assert models["A"].intercept == 1.0

    def test_coerce_rejects_garbage(self):
        with pytest.raises(InvalidInputError):
            coerce_models({"A": 3})


class TestNetworkImputation:

    @pytest.fixture
    def models(self):
        # A = 1 + 0.5 * D
        return {"A": NetworkModel("A", ("D",), [0.5], intercept=1.0)}

    def test_zero_entries_predicted(self, sparse_matrix, models):
        imputed = impute_network(sparse_matrix, models)

        # A is zero at c1 and c4 where D = 5
        assert imputed[0, 0] == pytest.approx(3.5)
        assert imputed[0, 3] == pytest.approx(3.5)
        # observed values pass through
        assert imputed[0, 1] == 2.0

    def test_predictors_read_from_input_only(self, sparse_matrix):
        # D is zero at c3; the prediction for B at c3 uses D = 0 even though
        # D itself gets imputed in the same call
        models = {"B": NetworkModel("B", ("D",), [0.5], intercept=1.0)}
        imputed = impute_network(sparse_matrix, models)
        assert imputed[1, 2] == pytest.approx(1.0)
        assert imputed[3, 2] == pytest.approx(5.0)

    def test_genes_without_model_use_baseline(self, sparse_matrix, models):
        imputed = impute_network(sparse_matrix, models)
        np.testing.assert_allclose(imputed[1], impute_baseline(sparse_matrix)[1])

    def test_negative_predictions_clipped(self, sparse_matrix):
        models = {"B": NetworkModel("B", ("D",), [-10.0])}
        imputed = impute_network(sparse_matrix, models)
        assert imputed[1, 1] == 0.0

    def test_absent_predictor_falls_back(self, sparse_matrix):
        models = {"A": NetworkModel("A", ("ZZZ",), [1.0])}
        imputed = impute_network(sparse_matrix, models)
        np.testing.assert_allclose(imputed, impute_baseline(sparse_matrix))

    def test_order_independent(self, sparse_matrix):
        models = {
            "A": NetworkModel("A", ("B",), [1.0], intercept=0.1),
            "B": NetworkModel("B", ("A",), [1.0], intercept=0.2),
        }
        forward = impute_network(sparse_matrix, models)

        order = np.array([3, 2, 1, 0])
        reversed_matrix = ExpressionMatrix(
            data=sparse_matrix.data[order],
            gene_ids=sparse_matrix.gene_ids[order],
            sample_ids=sparse_matrix.sample_ids,
        )
        backward = impute_network(reversed_matrix, models)
        np.testing.assert_allclose(backward[order.argsort()], forward)

    def test_imputer_without_models_equals_baseline(self, sparse_matrix):
        imputed = NetworkImputer().impute(sparse_matrix, ImputationContext())
        np.testing.assert_allclose(imputed, impute_baseline(sparse_matrix))

    def test_imputer_accepts_coefficient_table(self, sparse_matrix):
        table = pd.DataFrame({"intercept": [1.0], "D": [0.5]}, index=["A"])
        context = ImputationContext(params={"models": table})
        imputed = NetworkImputer().impute(sparse_matrix, context)
        assert imputed[0, 0] == pytest.approx(3.5)
