"""
Tests for RPM / TPM library-size normalization.
"""

import logging

import numpy as np
import pandas as pd
import pytest

from dropimpute.config import NormalizationConfig
from dropimpute.exceptions import InvalidInputError
from dropimpute.quality.validation import validate_matrix
from dropimpute.stats.normalization import (
    RPMNormalization,
    TPMNormalization,
    gene_lengths,
    normalize_rpm,
    normalize_tpm,
)


@pytest.fixture
def transcripts():
    return pd.DataFrame({
        "hgnc_symbol": ["A", "A", "A", "B", "D", "X"],
        "transcript_length": [1000, 2000, 3000, 500, 4000, 100],
    })


class TestRPM:

    def test_columns_sum_to_a_million(self, small_counts):
        result = normalize_rpm(small_counts)
        sums = result.matrix.data.sum(axis=0)
        nonempty = small_counts.data.sum(axis=0) > 0
        np.testing.assert_allclose(sums[nonempty], 1e6)

    def test_scale_and_log(self, sparse_matrix):
        config = NormalizationConfig(scale=10.0, log=True, pseudo_count=1.0)
        linear = normalize_rpm(sparse_matrix).matrix.data
        logged = normalize_rpm(sparse_matrix, config).matrix.data
        np.testing.assert_allclose(logged, np.log2(linear / 10.0 + 1.0))

    def test_zeros_stay_zero(self, sparse_matrix):
        result = normalize_rpm(sparse_matrix, NormalizationConfig(log=True))
        assert np.all(result.matrix.data[sparse_matrix.data == 0] == 0)

    def test_library_sizes_reported(self, sparse_matrix):
        result = normalize_rpm(sparse_matrix)
        assert result.library_sizes["c1"] == 6.0
        assert result.method == "rpm"

    def test_empty_sample_left_at_zero(self, sparse_frame):
        frame = sparse_frame.copy()
        frame["c6"] = 0.0
        result = normalize_rpm(validate_matrix(frame))
        assert np.all(result.matrix.data[:, -1] == 0)
        assert np.all(np.isfinite(result.matrix.data))

    def test_zero_pseudo_count_warns(self, sparse_matrix, caplog):
        config = NormalizationConfig(log=True, pseudo_count=0.0)
        with caplog.at_level(logging.WARNING):
            result = normalize_rpm(sparse_matrix, config)
        assert "pseudo-count" in caplog.text
        assert np.isneginf(result.matrix.data[sparse_matrix.data == 0]).all()

    def test_transform_wrapper(self, sparse_matrix):
        transform = RPMNormalization(NormalizationConfig(scale=2.0))
        np.testing.assert_allclose(
            transform.apply(sparse_matrix).data,
            normalize_rpm(sparse_matrix).matrix.data / 2.0,
        )
        assert "scale=2.0" in repr(transform)


class TestTPM:

    def test_gene_lengths_are_medians(self, transcripts):
        lengths = gene_lengths(transcripts)
        assert lengths["A"] == 2000
        assert lengths["B"] == 500

    def test_missing_columns(self):
        with pytest.raises(InvalidInputError, match="missing columns"):
            gene_lengths(pd.DataFrame({"gene": ["A"], "length": [1]}))

    def test_genes_without_length_dropped(self, sparse_matrix, transcripts):
        result = normalize_tpm(sparse_matrix, transcripts)

        assert result.matrix.gene_ids.tolist() == ["A", "B", "D"]
        assert result.dropped_genes == ["C"]
        assert result.method == "tpm"

    def test_length_then_library_size(self, sparse_matrix, transcripts):
        result = normalize_tpm(sparse_matrix, transcripts)

        counts = sparse_matrix.data[[0, 1, 3]]
        rpk = counts / (np.array([2000.0, 500.0, 4000.0]) / 1000.0)[:, None]
        expected = rpk / (rpk.sum(axis=0) / 1e6)
        np.testing.assert_allclose(result.matrix.data, expected)

    def test_insufficient_overlap(self, sparse_matrix):
        table = pd.DataFrame({"hgnc_symbol": ["A", "Q"], "transcript_length": [10, 20]})
        with pytest.raises(InvalidInputError, match="overlap"):
            normalize_tpm(sparse_matrix, table)

    def test_transform_wrapper(self, sparse_matrix, transcripts):
        transform = TPMNormalization(transcripts)
        assert transform.apply(sparse_matrix).n_genes == 3
