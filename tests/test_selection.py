"""
Tests for per-gene method selection.
"""

import numpy as np
import pandas as pd
import pytest

from dropimpute.evaluation.selection import MethodSelector, select_methods, selection_summary
from dropimpute.exceptions import InvalidInputError


class TestSelection:

    def test_lowest_mse_wins(self):
        errors = pd.DataFrame({"A": [1.0, 5.0], "B": [3.0, 2.0]}, index=["g1", "g2"])
        choice = select_methods(errors)

        assert choice["g1"] == "A"
        assert choice["g2"] == "B"
        assert choice.name == "method"

    def test_single_scored_method_selected(self):
        errors = pd.DataFrame(
            {"A": [np.nan, 1.0], "B": [7.0, np.nan], "C": [np.nan, np.nan]},
            index=["g1", "g2"],
        )
        choice = select_methods(errors)
        assert choice.tolist() == ["B", "A"]

    def test_every_gene_gets_a_method(self):
        rng = np.random.default_rng(0)
        values = rng.random((50, 3))
        values[rng.random((50, 3)) < 0.5] = np.nan
        errors = pd.DataFrame(values, columns=["x", "y", "z"])

        choice = select_methods(errors)
        assert choice.notna().all()
        assert set(choice) <= {"x", "y", "z"}
        assert len(choice) == 50


class TestTies:

    def test_priority_breaks_ties(self):
        errors = pd.DataFrame({"A": [2.0], "B": [2.0]}, index=["g1"])

        assert select_methods(errors, priority=["B", "A"])["g1"] == "B"
        assert select_methods(errors, priority=["A", "B"])["g1"] == "A"

    def test_default_priority_is_column_order(self):
        errors = pd.DataFrame({"B": [1.0], "A": [1.0]}, index=["g1"])
        assert select_methods(errors)["g1"] == "B"

    def test_ties_are_deterministic(self):
        errors = pd.DataFrame({"A": [1.0] * 10, "B": [1.0] * 10})
        first = select_methods(errors, priority=["B", "A"])
        for _ in range(5):
            pd.testing.assert_series_equal(select_methods(errors, priority=["B", "A"]), first)


class TestFallback:

    def test_unscored_gene_gets_highest_priority_usable_method(self):
        errors = pd.DataFrame(
            {"A": [np.nan, np.nan], "B": [np.nan, 1.0], "C": [np.nan, 3.0]},
            index=["g1", "g2"],
        )
        choice = select_methods(errors, priority=["A", "B", "C"])
        # A never scored, so B is the fallback
        assert choice["g1"] == "B"

    def test_explicit_fallback(self):
        errors = pd.DataFrame({"A": [np.nan, 1.0], "B": [np.nan, 2.0]}, index=["g1", "g2"])
        assert select_methods(errors, fallback="B")["g1"] == "B"

    def test_unknown_fallback_rejected(self):
        errors = pd.DataFrame({"A": [1.0]})
        with pytest.raises(InvalidInputError, match="fallback"):
            select_methods(errors, fallback="nope")

    def test_empty_table_rejected(self):
        with pytest.raises(InvalidInputError):
            select_methods(pd.DataFrame(index=["g1"]))


class TestHelpers:

    def test_selector_class(self):
        errors = pd.DataFrame({"A": [1.0, 1.0], "B": [1.0, 0.5]}, index=["g1", "g2"])
        choice = MethodSelector(priority=["B", "A"]).select(errors)
        assert choice.tolist() == ["B", "B"]

    def test_summary_counts(self):
        choice = pd.Series(["A", "B", "A"], index=["g1", "g2", "g3"])
        summary = selection_summary(choice)
        assert summary["A"] == 2
        assert summary["B"] == 1
