"""
Core data structure for single-cell expression matrices.

ExpressionMatrix unifies the numerical data (normalized counts) with gene and
cell identifiers, optional cell annotations (cluster labels used as hints by
some imputation methods) and per-entry quality provenance (which zeros were
masked, imputed, or rolled back).

Biological Context:
    - Rows = genes (unique symbols or Ensembl IDs)
    - Columns = samples (cells)
    - Values = non-negative expression (counts, RPM, TPM, log-expression)

    Single-cell matrices are dominated by zeros. The engine needs to know,
    for every entry, whether it started as a zero, whether it was hidden for
    evaluation and whether an imputed value survived biological-zero
    filtering.

Engineering Design:
    - Immutable: operations return new instances (functional style)
    - Type-safe: NumPy arrays for data, Pandas for identifiers and metadata
    - Validated: constructor checks shape and identifier consistency

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from dropimpute.core.biomatrix import ExpressionMatrix
    >>>
    >>> df = pd.DataFrame(
    ...     [[0.0, 3.0], [5.0, 0.0]],
    ...     index=["CD3E", "MS4A1"],
    ...     columns=["cell_1", "cell_2"],
    ... )
    >>> matrix = ExpressionMatrix.from_frame(df)
    >>> matrix.shape
    (2, 2)
    >>> matrix.row("CD3E")
    array([0., 3.])
"""

from __future__ import annotations

from typing import Optional
import numpy as np
import pandas as pd
from dropimpute.core.quality import QualityFlag

__all__ = ['ExpressionMatrix', 'initial_flags']


def initial_flags(data: np.ndarray) -> np.ndarray:
    """
    Build the quality flags of a freshly loaded matrix.

    Zeros get ORIGINAL_ZERO, NaN entries get MISSING_ORIGINAL, everything else
    ORIGINAL.
    """
    flags = np.full(data.shape, QualityFlag.ORIGINAL, dtype=int)
    with np.errstate(invalid='ignore'):
        flags[data == 0] |= QualityFlag.ORIGINAL_ZERO
    flags[np.isnan(data)] |= QualityFlag.MISSING_ORIGINAL
    return flags


class ExpressionMatrix:
    """
    Immutable container for expression data + identifiers + quality flags.

    Attributes:
        data: Expression values (genes × samples), float64
        gene_ids: Row identifiers, unique
        sample_ids: Column identifiers
        sample_metadata: Cell annotations (may have no columns)
        quality_flags: Per-entry QualityFlag bits (same shape as data)

    Shape Invariants:
        - data.shape[0] == len(gene_ids)
        - data.shape[1] == len(sample_ids)
        - quality_flags.shape == data.shape
        - sample_metadata.index equals sample_ids
        - gene_ids has no duplicates
    """

    def __init__(
        self,
        data: np.ndarray,
        gene_ids: pd.Index,
        sample_ids: pd.Index,
        sample_metadata: Optional[pd.DataFrame] = None,
        quality_flags: Optional[np.ndarray] = None,
    ):
        """
        Initialize ExpressionMatrix with validation.

        Args:
            data: Expression matrix (genes × samples)
            gene_ids: Row identifiers (must be unique)
            sample_ids: Column identifiers
            sample_metadata: DataFrame indexed by sample_ids. Defaults to an
                empty frame.
            quality_flags: Per-entry flags. Defaults to initial_flags(data).

        Raises:
            TypeError: If argument types are incorrect
            ValueError: If shapes are inconsistent, indices don't match or
                gene_ids contain duplicates
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if not isinstance(gene_ids, pd.Index):
            raise TypeError(f"gene_ids must be pd.Index, got {type(gene_ids)}")
        if not isinstance(sample_ids, pd.Index):
            raise TypeError(f"sample_ids must be pd.Index, got {type(sample_ids)}")

        if data.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {data.shape}")

        n_genes, n_samples = data.shape

        if len(gene_ids) != n_genes:
            raise ValueError(
                f"gene_ids length ({len(gene_ids)}) must match data rows ({n_genes})"
            )
        if len(sample_ids) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_ids)}) must match data columns ({n_samples})"
            )
        if not gene_ids.is_unique:
            dupes = gene_ids[gene_ids.duplicated()].unique().tolist()
            raise ValueError(f"gene_ids must be unique, duplicated: {dupes[:5]}")

        if sample_metadata is None:
            sample_metadata = pd.DataFrame(index=sample_ids)
        elif not isinstance(sample_metadata, pd.DataFrame):
            raise TypeError(
                f"sample_metadata must be pd.DataFrame, got {type(sample_metadata)}"
            )
        elif not sample_metadata.index.equals(sample_ids):
            raise ValueError(
                "sample_metadata.index must match sample_ids exactly. "
                f"Got {len(sample_metadata.index)} metadata rows for {len(sample_ids)} samples."
            )

        if quality_flags is None:
            quality_flags = initial_flags(data)
        elif not isinstance(quality_flags, np.ndarray):
            raise TypeError(f"quality_flags must be np.ndarray, got {type(quality_flags)}")
        elif quality_flags.shape != data.shape:
            raise ValueError(
                f"quality_flags shape {quality_flags.shape} must match data shape {data.shape}"
            )

        # Immutability by convention
        self._data = data
        self._gene_ids = gene_ids
        self._sample_ids = sample_ids
        self._sample_metadata = sample_metadata
        self._quality_flags = quality_flags

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        sample_metadata: Optional[pd.DataFrame] = None,
    ) -> ExpressionMatrix:
        """
        Build a matrix from a genes × samples DataFrame.

        No cleaning is done here; use validate_matrix() for untrusted input.
        """
        gene_ids = pd.Index(frame.index.astype(str))
        sample_ids = pd.Index(frame.columns.astype(str))
        if sample_metadata is not None:
            sample_metadata = sample_metadata.copy()
            sample_metadata.index = sample_ids
        return cls(
            data=frame.to_numpy(dtype=np.float64, copy=True),
            gene_ids=gene_ids,
            sample_ids=sample_ids,
            sample_metadata=sample_metadata,
        )

    @property
    def data(self) -> np.ndarray:
        """Expression values (genes × samples)."""
        return self._data

    @property
    def gene_ids(self) -> pd.Index:
        """Row identifiers."""
        return self._gene_ids

    @property
    def sample_ids(self) -> pd.Index:
        """Column identifiers."""
        return self._sample_ids

    @property
    def sample_metadata(self) -> pd.DataFrame:
        """Cell annotations."""
        return self._sample_metadata

    @property
    def quality_flags(self) -> np.ndarray:
        """Per-entry quality flags (same shape as data)."""
        return self._quality_flags

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_genes, n_samples)."""
        return self._data.shape

    @property
    def n_genes(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    def gene_index(self, gene: str) -> int:
        """Row position of a gene. Raises KeyError if absent."""
        return int(self._gene_ids.get_loc(gene))

    def row(self, gene: str) -> np.ndarray:
        """Expression vector of one gene (a view; do not modify)."""
        return self._data[self.gene_index(gene)]

    def flagged(self, flag: QualityFlag) -> np.ndarray:
        """Boolean mask of entries carrying ``flag``."""
        return (self._quality_flags & flag) > 0

    def with_data(
        self,
        data: np.ndarray,
        quality_flags: Optional[np.ndarray] = None,
    ) -> ExpressionMatrix:
        """
        Return a new matrix with replaced values, keeping identifiers.

        Args:
            data: New values, same shape as this matrix
            quality_flags: New flags. Defaults to a copy of the current flags.
        """
        if quality_flags is None:
            quality_flags = self._quality_flags.copy()
        return ExpressionMatrix(
            data=data,
            gene_ids=self._gene_ids,
            sample_ids=self._sample_ids,
            sample_metadata=self._sample_metadata,
            quality_flags=quality_flags,
        )

    def select_genes(self, mask: np.ndarray | pd.Series) -> ExpressionMatrix:
        """
        Subset by genes (rows).

        Args:
            mask: Boolean array/Series indicating which genes to keep

        Raises:
            ValueError: If mask length doesn't match n_genes
        """
        if isinstance(mask, pd.Series):
            mask = mask.values

        if len(mask) != self.n_genes:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_genes ({self.n_genes})"
            )

        return ExpressionMatrix(
            data=self._data[mask, :],
            gene_ids=self._gene_ids[mask],
            sample_ids=self._sample_ids,
            sample_metadata=self._sample_metadata,
            quality_flags=self._quality_flags[mask, :],
        )

    def select_samples(self, mask: np.ndarray | pd.Series) -> ExpressionMatrix:
        """
        Subset by samples (columns), preserving cell annotations.

        Raises:
            ValueError: If mask length doesn't match n_samples
        """
        if isinstance(mask, pd.Series):
            mask = mask.values

        if len(mask) != self.n_samples:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_samples ({self.n_samples})"
            )

        return ExpressionMatrix(
            data=self._data[:, mask],
            gene_ids=self._gene_ids,
            sample_ids=self._sample_ids[mask],
            sample_metadata=self._sample_metadata.iloc[np.flatnonzero(mask)],
            quality_flags=self._quality_flags[:, mask],
        )

    def to_frame(self) -> pd.DataFrame:
        """Genes × samples DataFrame view of the values (copied)."""
        return pd.DataFrame(
            self._data.copy(), index=self._gene_ids, columns=self._sample_ids
        )

    def same_layout(self, other: ExpressionMatrix) -> bool:
        """True when ``other`` has identical shape, gene and sample ids."""
        return (
            self.shape == other.shape
            and self._gene_ids.equals(other.gene_ids)
            and self._sample_ids.equals(other.sample_ids)
        )

    def copy(self, deep: bool = True) -> ExpressionMatrix:
        """
        Create a copy of this matrix.

        Args:
            deep: If True, copy all arrays. If False, share arrays.
        """
        if deep:
            return ExpressionMatrix(
                data=self._data.copy(),
                gene_ids=self._gene_ids.copy(),
                sample_ids=self._sample_ids.copy(),
                sample_metadata=self._sample_metadata.copy(),
                quality_flags=self._quality_flags.copy(),
            )
        return ExpressionMatrix(
            data=self._data,
            gene_ids=self._gene_ids,
            sample_ids=self._sample_ids,
            sample_metadata=self._sample_metadata,
            quality_flags=self._quality_flags,
        )

    def __repr__(self) -> str:
        if self.n_genes == 0 or self.n_samples == 0:
            return f"ExpressionMatrix({self.n_genes} genes × {self.n_samples} samples)"
        zero_fraction = float(np.mean(self._data == 0))
        return (
            f"ExpressionMatrix({self.n_genes} genes × {self.n_samples} samples)\n"
            f"  Genes: {self.gene_ids[0]}...{self.gene_ids[-1]}\n"
            f"  Samples: {self.sample_ids[0]}...{self.sample_ids[-1]}\n"
            f"  Zero fraction: {zero_fraction:.3f}"
        )

    def __str__(self) -> str:
        return self.__repr__()
