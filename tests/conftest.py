"""
Pytest configuration and shared fixtures.

Provides synthetic single-cell count generators and small hand-written
matrices shared by all test modules.
"""

import numpy as np
import pandas as pd
import pytest

from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.imputation.base import default_registry


def generate_dropout_counts(
    n_genes: int,
    n_samples: int,
    dropout_rate: float = 0.3,
    silent_fraction: float = 0.1,
    seed: int = 42,
) -> ExpressionMatrix:
    """
    Generate a synthetic scRNA-seq count matrix with dropouts.

    Args:
        n_genes: Number of genes
        n_samples: Number of cells
        dropout_rate: Probability that an expressed entry is recorded as 0
        silent_fraction: Fraction of (gene, cell-cluster) blocks with no
            expression at all (biological zeros)
        seed: Random seed

    Returns:
        ExpressionMatrix of counts with two cell clusters in sample_metadata

    Design:
        - Gene means are log-normal, counts negative binomial
        - Dropouts hit expressed entries uniformly at random
        - Some genes are switched off in one of the two clusters
    """
    rng = np.random.default_rng(seed)

    means = rng.lognormal(mean=2.0, sigma=1.0, size=n_genes)
    dispersion = 2.0
    p = dispersion / (dispersion + means)
    counts = rng.negative_binomial(dispersion, p[:, None], size=(n_genes, n_samples))
    counts = counts.astype(np.float64)

    clusters = np.where(np.arange(n_samples) < n_samples // 2, "A", "B")
    silent = rng.random(n_genes) < silent_fraction
    counts[np.ix_(silent, clusters == "B")] = 0.0

    dropped = rng.random(counts.shape) < dropout_rate
    counts[dropped] = 0.0

    gene_ids = pd.Index([f"GENE_{i:04d}" for i in range(n_genes)])
    sample_ids = pd.Index([f"CELL_{j:04d}" for j in range(n_samples)])
    metadata = pd.DataFrame({"cluster": clusters}, index=sample_ids)

    return ExpressionMatrix(
        data=counts,
        gene_ids=gene_ids,
        sample_ids=sample_ids,
        sample_metadata=metadata,
    )


@pytest.fixture
def small_counts():
    """40 genes × 30 cells with dropouts."""
    return generate_dropout_counts(n_genes=40, n_samples=30, seed=1)


@pytest.fixture
def medium_counts():
    """200 genes × 100 cells with dropouts."""
    return generate_dropout_counts(n_genes=200, n_samples=100, seed=7)


@pytest.fixture
def tiny_frame():
    """3 genes × 4 samples, all positive (hand-checkable)."""
    return pd.DataFrame(
        [
            [1.0, 2.0, 3.0, 6.0],
            [4.0, 4.0, 4.0, 4.0],
            [10.0, 0.5, 2.5, 3.0],
        ],
        index=["g1", "g2", "g3"],
        columns=["s1", "s2", "s3", "s4"],
    )


@pytest.fixture
def tiny_matrix(tiny_frame):
    return ExpressionMatrix.from_frame(tiny_frame)


@pytest.fixture
def sparse_frame():
    """4 genes × 5 samples with zeros, one gene entirely silent."""
    return pd.DataFrame(
        [
            [0.0, 2.0, 4.0, 0.0, 6.0],
            [1.0, 0.0, 0.0, 3.0, 0.0],
            [0.0, 0.0, 0.0, 0.0, 0.0],
            [5.0, 5.0, 0.0, 5.0, 5.0],
        ],
        index=["A", "B", "C", "D"],
        columns=["c1", "c2", "c3", "c4", "c5"],
    )


@pytest.fixture
def sparse_matrix(sparse_frame):
    return ExpressionMatrix.from_frame(sparse_frame)


@pytest.fixture
def registry():
    """Fresh registry with the built-in methods (isolated per test)."""
    return default_registry()
