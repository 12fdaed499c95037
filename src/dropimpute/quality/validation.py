"""
Input validation for expression matrices.

Every public workflow starts here. The validator coerces whatever the caller
hands in (an ExpressionMatrix, a genes × samples DataFrame, or a bare array
plus gene identifiers) into a clean ExpressionMatrix, or refuses it.

Contract:
    - Values must be numeric (or coercible to numbers)
    - No negative values (expression is a count-derived quantity)
    - No infinite values; NaN is accepted as "explicitly missing" unless
      allow_missing=False
    - Gene identifiers must be present, non-empty and unique

Validation is pure and idempotent: validating an already-valid matrix yields
a matrix with the same identifiers, values and flags.

Examples:
    >>> from dropimpute.quality.validation import validate_matrix
    >>>
    >>> clean = validate_matrix(counts_df)
    >>> clean = validate_matrix(array, gene_ids=genes, sample_ids=cells)
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from dropimpute.core.biomatrix import ExpressionMatrix, initial_flags
from dropimpute.exceptions import InvalidInputError

__all__ = ["MatrixValidator", "validate_matrix"]

logger = logging.getLogger(__name__)


class MatrixValidator:
    """
    Validate and clean expression matrices.

    Args:
        allow_missing: Accept NaN entries (flagged MISSING_ORIGINAL).
            Default True.

    Examples:
        >>> validator = MatrixValidator(allow_missing=False)
        >>> problems = validator.check(df)
        >>> if not problems:
        ...     matrix = validator.validate(df)
    """

    def __init__(self, allow_missing: bool = True):
        self.allow_missing = allow_missing

    def validate(
        self,
        data,
        gene_ids: Optional[Sequence] = None,
        sample_ids: Optional[Sequence] = None,
        sample_metadata: Optional[pd.DataFrame] = None,
    ) -> ExpressionMatrix:
        """
        Return a cleaned copy of ``data`` as an ExpressionMatrix.

        Args:
            data: ExpressionMatrix, genes × samples DataFrame, or 2-D array-like
            gene_ids: Row identifiers; required for array input, overrides the
                DataFrame index otherwise
            sample_ids: Column identifiers; generated as sample_0.. if absent
            sample_metadata: Cell annotations indexed (or ordered) like the
                samples

        Raises:
            InvalidInputError: If any contract check fails
        """
        values, genes, samples, metadata, flags = self._coerce(
            data, gene_ids, sample_ids, sample_metadata
        )

        errors = self._check_values(values) + self._check_ids(genes, samples, values.shape)
        if errors:
            raise InvalidInputError(
                "Invalid expression matrix:\n" + "\n".join(f"  - {e}" for e in errors)
            )

        if metadata is not None:
            if len(metadata) != len(samples):
                raise InvalidInputError(
                    f"sample_metadata has {len(metadata)} rows for {len(samples)} samples"
                )
            metadata = metadata.copy()
            metadata.index = samples

        if flags is None or flags.shape != values.shape:
            flags = initial_flags(values)
        else:
            flags = flags.copy()

        n_missing = int(np.isnan(values).sum())
        if n_missing:
            logger.debug(f"Matrix contains {n_missing} missing (NaN) entries")

        return ExpressionMatrix(
            data=values,
            gene_ids=genes,
            sample_ids=samples,
            sample_metadata=metadata,
            quality_flags=flags,
        )

    def check(
        self,
        data,
        gene_ids: Optional[Sequence] = None,
        sample_ids: Optional[Sequence] = None,
    ) -> list[str]:
        """
        List contract violations without raising.

        Returns:
            Error messages (empty list = valid)
        """
        try:
            values, genes, samples, _, _ = self._coerce(data, gene_ids, sample_ids, None)
        except InvalidInputError as e:
            return [str(e)]
        return self._check_values(values) + self._check_ids(genes, samples, values.shape)

    def _coerce(self, data, gene_ids, sample_ids, sample_metadata):
        """Turn the supported containers into (values, genes, samples, metadata, flags)."""
        flags = None

        if isinstance(data, ExpressionMatrix):
            values = data.data.astype(np.float64, copy=True)
            genes = data.gene_ids
            samples = data.sample_ids
            if sample_metadata is None:
                sample_metadata = data.sample_metadata
            flags = data.quality_flags
        elif isinstance(data, pd.DataFrame):
            values = _frame_to_float(data)
            genes = None if isinstance(data.index, pd.RangeIndex) else data.index
            samples = None if isinstance(data.columns, pd.RangeIndex) else data.columns
        else:
            try:
                values = np.array(data, dtype=np.float64)
            except (TypeError, ValueError) as e:
                raise InvalidInputError(f"Matrix is not coercible to numbers: {e}")
            genes = None
            samples = None

        if values.ndim != 2:
            raise InvalidInputError(f"Matrix must be 2-D, got shape {values.shape}")

        if gene_ids is not None:
            genes = gene_ids
        if sample_ids is not None:
            samples = sample_ids

        if genes is None:
            raise InvalidInputError(
                "Gene identifiers are missing: pass a DataFrame indexed by gene "
                "or provide gene_ids"
            )
        genes = pd.Index([str(g) for g in genes])

        if samples is None:
            samples = pd.Index([f"sample_{j}" for j in range(values.shape[1])])
        else:
            samples = pd.Index([str(s) for s in samples])

        return values, genes, samples, sample_metadata, flags

    def _check_values(self, values: np.ndarray) -> list[str]:
        errors: list[str] = []

        if values.size == 0:
            errors.append(f"Matrix is empty (shape {values.shape})")
            return errors

        nan_mask = np.isnan(values)
        if np.isinf(values).any():
            errors.append(f"Matrix contains {int(np.isinf(values).sum())} infinite values")
        if nan_mask.any() and not self.allow_missing:
            errors.append(f"Matrix contains {int(nan_mask.sum())} missing (NaN) values")

        with np.errstate(invalid='ignore'):
            n_negative = int(np.sum(values < 0))
        if n_negative:
            errors.append(f"Matrix contains {n_negative} negative values")

        return errors

    def _check_ids(self, genes: pd.Index, samples: pd.Index, shape) -> list[str]:
        errors: list[str] = []

        if len(genes) != shape[0]:
            errors.append(f"{len(genes)} gene ids for {shape[0]} rows")
        if len(samples) != shape[1]:
            errors.append(f"{len(samples)} sample ids for {shape[1]} columns")

        empty = [g for g in genes if not g.strip() or g.lower() == "nan"]
        if empty:
            errors.append(f"{len(empty)} gene ids are empty or NaN")

        if not genes.is_unique:
            dupes = genes[genes.duplicated()].unique().tolist()
            errors.append(f"Duplicated gene ids: {dupes[:10]}")

        return errors


def _frame_to_float(frame: pd.DataFrame) -> np.ndarray:
    """Coerce every column of ``frame`` to float, failing on text."""
    try:
        numeric = frame.apply(pd.to_numeric, errors="raise")
        return numeric.to_numpy(dtype=np.float64, copy=True)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Matrix is not coercible to numbers: {e}")


def validate_matrix(
    data,
    gene_ids: Optional[Sequence] = None,
    sample_ids: Optional[Sequence] = None,
    sample_metadata: Optional[pd.DataFrame] = None,
    allow_missing: bool = True,
) -> ExpressionMatrix:
    """
    Validate and clean an expression matrix.

    Convenience wrapper around MatrixValidator(allow_missing).validate().

    Raises:
        InvalidInputError: If the matrix violates the input contract
    """
    return MatrixValidator(allow_missing=allow_missing).validate(
        data, gene_ids=gene_ids, sample_ids=sample_ids, sample_metadata=sample_metadata
    )
