"""
Per-gene selection of the best imputation method.

Given the PerGeneError table (genes × methods), each gene is assigned the
method with the lowest masked-entry MSE. The result is a MethodChoice: a
Series mapping every gene to exactly one method name.

Rules:
    - NaN errors are ignored (method failed, or gene had no masked entries)
    - Ties are broken by a fixed priority order, never arbitrarily
    - A gene where every method is NaN gets the fallback method: the caller's
      choice, else the highest-priority method that was scored on at least
      one gene

Examples:
    >>> errors = pd.DataFrame(
    ...     {"a": [1.0, 5.0], "b": [3.0, 2.0]}, index=["g1", "g2"]
    ... )
    >>> select_methods(errors).tolist()
    ['a', 'b']
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from dropimpute.exceptions import InvalidInputError

__all__ = ["MethodSelector", "select_methods", "selection_summary"]

logger = logging.getLogger(__name__)


def _priority_order(columns: Sequence[str], priority: Optional[Sequence[str]]) -> list[str]:
    """Columns sorted by priority; columns not in the list keep table order after it."""
    if not priority:
        return list(columns)
    ranked = [m for m in priority if m in columns]
    return ranked + [c for c in columns if c not in ranked]


def select_methods(
    errors: pd.DataFrame,
    priority: Optional[Sequence[str]] = None,
    fallback: Optional[str] = None,
) -> pd.Series:
    """
    Choose, for each gene, the method with minimum MSE.

    Args:
        errors: PerGeneError table, index = genes, columns = methods
        priority: Tie-break order (earlier wins). Defaults to column order.
        fallback: Method for genes with no finite error. Defaults to the
            highest-priority method with at least one finite error.

    Returns:
        MethodChoice Series (gene → method name), named "method"

    Raises:
        InvalidInputError: If the table has no methods or the fallback is
            not one of its columns
    """
    if errors.shape[1] == 0:
        raise InvalidInputError("Cannot select methods from an empty error table")

    order = _priority_order([str(c) for c in errors.columns], priority)
    table = errors.copy()
    table.columns = [str(c) for c in table.columns]
    table = table[order]

    values = table.to_numpy(dtype=np.float64)
    finite = np.isfinite(values)

    if fallback is None:
        usable = [m for m, ok in zip(order, finite.any(axis=0)) if ok]
        fallback = usable[0] if usable else order[0]
    elif fallback not in order:
        raise InvalidInputError(
            f"fallback method '{fallback}' is not among evaluated methods {order}"
        )

    # argmin returns the first minimum, so column order breaks ties
    best = np.argmin(np.where(finite, values, np.inf), axis=1)
    chosen = np.asarray(order, dtype=object)[best]

    unscored = ~finite.any(axis=1)
    chosen[unscored] = fallback

    if unscored.any():
        logger.info(
            f"{int(unscored.sum())} genes had no finite error; assigned fallback '{fallback}'"
        )

    choice = pd.Series(chosen, index=errors.index, name="method", dtype=object)
    logger.info(f"Method selection: {selection_summary(choice).to_dict()}")
    return choice


def selection_summary(choice: pd.Series) -> pd.Series:
    """Number of genes assigned to each method."""
    return choice.value_counts().rename("n_genes")


class MethodSelector:
    """
    Reusable selection configuration.

    Args:
        priority: Tie-break order (earlier wins)
        fallback: Method for genes with no finite error
    """

    def __init__(
        self,
        priority: Optional[Sequence[str]] = None,
        fallback: Optional[str] = None,
    ):
        self.priority = list(priority) if priority is not None else None
        self.fallback = fallback

    def select(self, errors: pd.DataFrame) -> pd.Series:
        return select_methods(errors, priority=self.priority, fallback=self.fallback)
