"""
Gene-wise reconstruction error at masked positions.

For every gene, the mean squared error between the true (pre-mask) values and
a method's imputed values is computed over the entries that were hidden by
the Masker, and nowhere else. Unmasked entries carry no information about
recovery: most methods pass observed values straight through.

Invariants:
    - MSE is always >= 0
    - MSE is NaN exactly when the gene has no masked entries
    - The same computation is used for every method; the ``is_baseline`` flag
      only allows a per-gene vector (one predicted value per gene) in place of
      a full matrix and is recorded on the result

Examples:
    >>> from dropimpute.evaluation.scoring import compute_mse_genewise
    >>>
    >>> errors = compute_mse_genewise(
    ...     real=mask_result.original,
    ...     masked=mask_result.masked,
    ...     imputed=imputations["network"],
    ...     method="network",
    ... )
    >>> errors.mse.head()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.evaluation.masking import MaskResult
from dropimpute.exceptions import ShapeMismatchError

__all__ = ["GeneErrors", "compute_mse_genewise", "score_methods"]

logger = logging.getLogger(__name__)

ArrayLike = Union[ExpressionMatrix, pd.DataFrame, pd.Series, NDArray[np.float64]]


@dataclass(frozen=True)
class GeneErrors:
    """
    Per-gene reconstruction error of one method.

    Attributes:
        method: Method name (None if not given)
        mse: MSE per gene (NaN for genes without masked entries)
        n_masked: Number of masked entries per gene
        is_baseline: True when the comparison input was scored as a baseline
            pass (per-gene vector allowed) rather than a raw imputed matrix
    """

    method: str | None
    mse: pd.Series
    n_masked: pd.Series
    is_baseline: bool = False

    @property
    def mean_mse(self) -> float:
        """Mean MSE over genes with at least one masked entry."""
        valid = self.mse.dropna()
        return float(valid.mean()) if len(valid) else float("nan")

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"mse": self.mse, "n_masked": self.n_masked})


def _values(x: ArrayLike) -> NDArray[np.float64]:
    if isinstance(x, ExpressionMatrix):
        return x.data
    if isinstance(x, (pd.DataFrame, pd.Series)):
        return x.to_numpy(dtype=np.float64)
    return np.asarray(x, dtype=np.float64)


def _gene_index(*candidates: ArrayLike, n_genes: int) -> pd.Index:
    for c in candidates:
        if isinstance(c, ExpressionMatrix):
            return c.gene_ids
        if isinstance(c, (pd.DataFrame, pd.Series)):
            return pd.Index(c.index.astype(str))
    return pd.RangeIndex(n_genes)


def compute_mse_genewise(
    real: ArrayLike,
    masked: ArrayLike,
    imputed: ArrayLike,
    is_baseline: bool = False,
    method: str | None = None,
    mask: NDArray[np.bool_] | None = None,
) -> GeneErrors:
    """
    Compute per-gene MSE between true and imputed values at masked entries.

    Args:
        real: Pre-mask values (genes × samples)
        masked: Masked values; entries that are 0 here but positive in
            ``real`` are the masked positions
        imputed: Imputed matrix (genes × samples). With ``is_baseline`` it
            may instead be a per-gene vector, broadcast across samples.
        is_baseline: Score a baseline pass (records the flag, allows a vector)
        method: Name recorded on the result
        mask: Explicit mask overriding the one derived from real/masked

    Returns:
        GeneErrors with MSE per gene

    Raises:
        ShapeMismatchError: If the inputs do not align
    """
    real_v = _values(real)
    masked_v = _values(masked)
    imputed_v = _values(imputed)

    if real_v.ndim != 2:
        raise ShapeMismatchError(f"real must be 2-D, got shape {real_v.shape}")
    if masked_v.shape != real_v.shape:
        raise ShapeMismatchError(
            f"masked shape {masked_v.shape} does not match real shape {real_v.shape}"
        )

    n_genes = real_v.shape[0]

    if imputed_v.ndim == 1:
        if not is_baseline:
            raise ShapeMismatchError(
                "A per-gene vector is only accepted for a baseline pass "
                "(is_baseline=True)"
            )
        if len(imputed_v) != n_genes:
            raise ShapeMismatchError(
                f"baseline vector has {len(imputed_v)} entries for {n_genes} genes"
            )
        imputed_v = np.broadcast_to(imputed_v[:, None], real_v.shape)
    elif imputed_v.shape != real_v.shape:
        raise ShapeMismatchError(
            f"imputed shape {imputed_v.shape} does not match real shape {real_v.shape}"
        )

    if mask is None:
        with np.errstate(invalid='ignore'):
            mask = (real_v > 0) & (masked_v == 0)
    elif mask.shape != real_v.shape:
        raise ShapeMismatchError(
            f"mask shape {mask.shape} does not match real shape {real_v.shape}"
        )

    sq_err = np.where(mask, (real_v - imputed_v) ** 2, 0.0)
    n_masked = mask.sum(axis=1)
    with np.errstate(invalid='ignore', divide='ignore'):
        mse = np.where(n_masked > 0, sq_err.sum(axis=1) / n_masked, np.nan)

    genes = _gene_index(real, imputed, masked, n_genes=n_genes)
    return GeneErrors(
        method=method,
        mse=pd.Series(mse, index=genes, name=method),
        n_masked=pd.Series(n_masked.astype(int), index=genes, name="n_masked"),
        is_baseline=is_baseline,
    )


def score_methods(
    mask_result: MaskResult,
    imputations: Mapping[str, ExpressionMatrix],
    failed: Mapping[str, object] | None = None,
    baseline_methods: tuple[str, ...] = (),
) -> pd.DataFrame:
    """
    Build the PerGeneError table (genes × methods) for one evaluation round.

    Args:
        mask_result: Masking round the imputations were run on
        imputations: Method name → imputed masked matrix
        failed: Methods that failed; they get all-NaN columns
        baseline_methods: Methods scored as baseline passes

    Returns:
        DataFrame of MSE values, columns in the order of ``imputations``
        followed by failed methods
    """
    columns: dict[str, pd.Series] = {}
    for name, imputed in imputations.items():
        errors = compute_mse_genewise(
            real=mask_result.original,
            masked=mask_result.masked,
            imputed=imputed,
            is_baseline=name in baseline_methods,
            method=name,
            mask=mask_result.mask,
        )
        columns[name] = errors.mse
        logger.info(
            f"{name}: mean MSE {errors.mean_mse:.4g} over "
            f"{int(errors.mse.notna().sum())} scored genes"
        )

    for name in (failed or {}):
        if name not in columns:
            columns[name] = pd.Series(
                np.nan, index=mask_result.original.gene_ids, name=name
            )

    table = pd.DataFrame(columns, index=mask_result.original.gene_ids)
    table.index.name = "gene"
    table.columns.name = "method"
    return table
