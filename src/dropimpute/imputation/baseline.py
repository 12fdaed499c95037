"""
Baseline imputation: replace dropouts with the gene's mean expression.

For each gene, every zero (or NaN) entry is replaced by the mean of that
gene's strictly positive entries; positive entries pass through unchanged.
The mean is taken over non-zero samples only, so the imputed value estimates
"expression when detected" rather than being pulled towards zero by the
dropouts themselves.

Baseline is both a method in its own right and the fallback of the Network
method for genes without a fitted model.

Parameters (ImputationContext.params):
    gene_means: Optional per-gene means (Series indexed by gene, or array in
        row order) used instead of estimating them from the input. During
        evaluation the orchestrator supplies the means of the pre-mask
        matrix, so Baseline is scored as the per-gene mean predictor.

Examples:
    >>> from dropimpute.imputation.baseline import BaselineImputer, gene_means
    >>>
    >>> imputed = BaselineImputer().impute(matrix, ImputationContext())
    >>> gene_means(matrix)
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.exceptions import InvalidInputError
from dropimpute.imputation.base import BASELINE, ImputationContext

__all__ = ["BaselineImputer", "gene_means", "impute_baseline"]

logger = logging.getLogger(__name__)


def gene_means(matrix: ExpressionMatrix | NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Mean of each gene over its strictly positive entries.

    Genes without positive entries get 0.

    Returns:
        Array of length n_genes
    """
    data = matrix.data if isinstance(matrix, ExpressionMatrix) else np.asarray(matrix, dtype=float)
    with np.errstate(invalid='ignore'):
        positive = data > 0
    counts = positive.sum(axis=1)
    sums = np.where(positive, data, 0.0).sum(axis=1)
    with np.errstate(invalid='ignore', divide='ignore'):
        means = np.where(counts > 0, sums / counts, 0.0)
    return means


def _resolve_means(matrix: ExpressionMatrix, override) -> NDArray[np.float64]:
    if override is None:
        return gene_means(matrix)
    if isinstance(override, pd.Series):
        missing = matrix.gene_ids.difference(override.index.astype(str))
        if len(missing):
            raise InvalidInputError(
                f"gene_means is missing {len(missing)} genes, e.g. {missing[:5].tolist()}"
            )
        series = override.copy()
        series.index = series.index.astype(str)
        return series.reindex(matrix.gene_ids).to_numpy(dtype=np.float64)
    means = np.asarray(override, dtype=np.float64)
    if means.shape != (matrix.n_genes,):
        raise InvalidInputError(
            f"gene_means must have shape ({matrix.n_genes},), got {means.shape}"
        )
    return means


def impute_baseline(
    matrix: ExpressionMatrix,
    means: NDArray[np.float64] | pd.Series | None = None,
) -> NDArray[np.float64]:
    """
    Replace zero and NaN entries of each gene with its mean.

    Args:
        matrix: Input matrix
        means: Per-gene values to impute; estimated from ``matrix`` if None

    Returns:
        Imputed values (new array)
    """
    values = _resolve_means(matrix, means)
    data = matrix.data.copy()
    with np.errstate(invalid='ignore'):
        to_fill = (data == 0) | np.isnan(data)
    rows, cols = np.nonzero(to_fill)
    data[rows, cols] = values[rows]

    n_silent = int(np.sum(values == 0))
    if n_silent:
        logger.debug(f"Baseline: {n_silent} genes have no positive entries and stay at 0")

    return data


class BaselineImputer:
    """Gene-mean imputation over non-zero samples."""

    @property
    def name(self) -> str:
        return BASELINE

    def impute(self, matrix: ExpressionMatrix, context: ImputationContext) -> NDArray[np.float64]:
        return impute_baseline(matrix, means=context.get("gene_means"))

    def __repr__(self) -> str:
        return "BaselineImputer()"
