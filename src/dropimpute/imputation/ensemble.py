"""
Per-gene ensemble composition.

The ensemble matrix is assembled row by row: each gene's row is copied
verbatim (values and quality flags) from the imputation produced by the
method chosen for that gene. Nothing is averaged or re-computed, so an
ensemble row is bit-identical to the corresponding row of the chosen method.

Examples:
    >>> choice = pd.Series({"CD3E": "network", "MS4A1": "baseline"})
    >>> ensemble = compose_ensemble(choice, {"baseline": b, "network": n})
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

import numpy as np
import pandas as pd

from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.exceptions import InvalidInputError, MissingMethodResultError, ShapeMismatchError

__all__ = ["compose_ensemble"]

logger = logging.getLogger(__name__)


def compose_ensemble(
    choice: pd.Series,
    imputations: Mapping[str, ExpressionMatrix],
    fallback: Optional[str] = None,
) -> ExpressionMatrix:
    """
    Build the ensemble imputation from a per-gene method choice.

    Args:
        choice: MethodChoice (gene → method name)
        imputations: Method name → imputed matrix; all share one layout
        fallback: Method used for genes of the matrix absent from ``choice``.
            If None, such genes are an error.

    Returns:
        ExpressionMatrix with each row taken from the chosen method

    Raises:
        MissingMethodResultError: If a chosen method has no imputation
        ShapeMismatchError: If the imputations do not share one layout
        InvalidInputError: If genes are missing from ``choice`` and no
            fallback is given, or if no imputations are supplied
    """
    if not imputations:
        raise InvalidInputError("No imputations to compose an ensemble from")

    names = list(imputations)
    reference = imputations[names[0]]
    for name in names[1:]:
        if not reference.same_layout(imputations[name]):
            raise ShapeMismatchError(
                f"Imputation '{name}' does not share the layout of '{names[0]}'"
            )

    choice = choice.copy()
    choice.index = choice.index.astype(str)
    choice = choice.astype(str).str.lower()

    per_gene = choice.reindex(reference.gene_ids)
    absent = per_gene.isna()
    if absent.any():
        if fallback is None:
            raise InvalidInputError(
                f"{int(absent.sum())} genes have no method choice, "
                f"e.g. {per_gene.index[absent][:5].tolist()}"
            )
        logger.info(f"Ensemble: {int(absent.sum())} genes without a choice use '{fallback}'")
        per_gene[absent] = str(fallback).lower()

    missing = sorted(set(per_gene) - set(imputations))
    if missing:
        raise MissingMethodResultError(missing, names)

    data = np.empty(reference.shape, dtype=np.float64)
    flags = np.empty(reference.quality_flags.shape, dtype=reference.quality_flags.dtype)
    chosen = per_gene.to_numpy()
    for name in pd.unique(chosen):
        rows = chosen == name
        source = imputations[name]
        data[rows] = source.data[rows]
        flags[rows] = source.quality_flags[rows]

    logger.info(f"Ensemble composed: {per_gene.value_counts().to_dict()}")
    return reference.with_data(data, quality_flags=flags)
