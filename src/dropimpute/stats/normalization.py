"""
Library-size normalization of single-cell count matrices.

Imputation methods and the dropout model expect counts on a common scale.
Two normalizations are provided:

- RPM (reads per million): each sample divided by its library size / 1e6
- TPM (transcripts per million): each gene first divided by its length in
  kilobases, then RPM on the length-corrected matrix

Both optionally divide by a constant ``scale`` and return
log2(x + pseudo_count). Settings come from an explicit NormalizationConfig
passed to each call.

Gene Length (TPM):
    A gene's length is the median length of all its transcripts, taken from a
    table with ``hgnc_symbol`` and ``transcript_length`` columns (e.g. a
    biomaRt export). Genes without a length are dropped; fewer than two
    overlapping genes is an error.

Edge Cases:
    - Samples with zero library size cannot be scaled; they stay all-zero
      and are logged
    - NaN entries propagate and are excluded from library sizes
    - pseudo_count = 0 with log = True produces -inf for zeros (warned)

Examples:
    >>> from dropimpute.config import NormalizationConfig
    >>> from dropimpute.stats.normalization import normalize_rpm
    >>>
    >>> result = normalize_rpm(counts, NormalizationConfig(log=True))
    >>> result.matrix
    >>> result.library_sizes
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from dropimpute.config import NormalizationConfig
from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.core.transform import Transform
from dropimpute.exceptions import InvalidInputError

__all__ = [
    "NormalizationResult",
    "normalize_rpm",
    "normalize_tpm",
    "gene_lengths",
    "RPMNormalization",
    "TPMNormalization",
]

logger = logging.getLogger(__name__)

TRANSCRIPT_COLUMNS = ("hgnc_symbol", "transcript_length")


@dataclass(frozen=True)
class NormalizationResult:
    """Result of a normalization.

    Attributes:
        matrix: Normalized matrix
        method: "rpm" or "tpm"
        library_sizes: Per-sample totals the data were divided by (before
            the 1e6 factor)
        config: Settings used
        dropped_genes: Genes removed for lack of a length (TPM only)
    """

    matrix: ExpressionMatrix
    method: str
    library_sizes: pd.Series
    config: NormalizationConfig
    dropped_genes: list[str] = field(default_factory=list)


def _scale_and_log(data: NDArray[np.float64], config: NormalizationConfig) -> NDArray[np.float64]:
    data = data / config.scale
    if config.log:
        if config.pseudo_count == 0:
            logger.warning("Using 0 pseudo-count: -inf may be generated for zero entries")
        with np.errstate(divide='ignore'):
            data = np.log2(data + config.pseudo_count)
    return data


def _per_million(data: NDArray[np.float64]) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    library = np.nansum(data, axis=0)
    empty = library == 0
    if empty.any():
        logger.warning(f"{int(empty.sum())} samples have zero library size and stay at 0")
    factors = np.where(empty, 1.0, library / 1e6)
    return data / factors[None, :], library


def normalize_rpm(
    matrix: ExpressionMatrix,
    config: NormalizationConfig | None = None,
) -> NormalizationResult:
    """
    Reads-per-million normalization.

    Args:
        matrix: Raw counts (genes × samples)
        config: Scale / log settings (defaults: scale 1, no log)

    Returns:
        NormalizationResult
    """
    config = config or NormalizationConfig()
    scaled, library = _per_million(matrix.data)
    data = _scale_and_log(scaled, config)

    logger.info(
        f"RPM normalized {matrix.n_genes} genes × {matrix.n_samples} samples "
        f"(scale={config.scale}, log={config.log})"
    )
    return NormalizationResult(
        matrix=matrix.with_data(data),
        method="rpm",
        library_sizes=pd.Series(library, index=matrix.sample_ids, name="library_size"),
        config=config,
    )


def gene_lengths(transcript_lengths: pd.DataFrame) -> pd.Series:
    """
    Median transcript length per gene symbol.

    Raises:
        InvalidInputError: If the required columns are missing
    """
    missing = [c for c in TRANSCRIPT_COLUMNS if c not in transcript_lengths.columns]
    if missing:
        raise InvalidInputError(
            f"Transcript length table is missing columns {missing}; "
            f"required: {list(TRANSCRIPT_COLUMNS)}"
        )
    table = transcript_lengths.loc[:, list(TRANSCRIPT_COLUMNS)].dropna()
    lengths = pd.to_numeric(table["transcript_length"], errors="coerce")
    symbols = table["hgnc_symbol"].astype(str)
    per_gene = lengths.groupby(symbols).median().dropna()
    return per_gene[per_gene > 0].rename("gene_length")


def normalize_tpm(
    matrix: ExpressionMatrix,
    transcript_lengths: pd.DataFrame,
    config: NormalizationConfig | None = None,
) -> NormalizationResult:
    """
    Transcripts-per-million normalization.

    Args:
        matrix: Raw counts, gene ids are HGNC symbols
        transcript_lengths: Table with ``hgnc_symbol`` and ``transcript_length``
        config: Scale / log settings

    Returns:
        NormalizationResult restricted to genes with a known length

    Raises:
        InvalidInputError: If fewer than two genes have a length
    """
    config = config or NormalizationConfig()
    lengths = gene_lengths(transcript_lengths)

    keep = matrix.gene_ids.isin(lengths.index)
    if int(keep.sum()) < 2:
        raise InvalidInputError(
            "Not enough overlap between gene ids and the transcript length table "
            f"({int(keep.sum())} common genes)"
        )
    dropped = matrix.gene_ids[~keep].tolist()
    if dropped:
        logger.info(f"TPM: dropped {len(dropped)} genes without a transcript length")

    subset = matrix.select_genes(keep)
    kb = lengths.reindex(subset.gene_ids).to_numpy(dtype=np.float64) / 1000.0
    rpk = subset.data / kb[:, None]
    scaled, library = _per_million(rpk)
    data = _scale_and_log(scaled, config)

    logger.info(
        f"TPM normalized {subset.n_genes} genes × {subset.n_samples} samples "
        f"(scale={config.scale}, log={config.log})"
    )
    return NormalizationResult(
        matrix=subset.with_data(data),
        method="tpm",
        library_sizes=pd.Series(library, index=subset.sample_ids, name="library_size"),
        config=config,
        dropped_genes=dropped,
    )


class RPMNormalization(Transform):
    """RPM normalization as a reusable transform."""

    def __init__(self, config: NormalizationConfig | None = None):
        self.config = config or NormalizationConfig()
        super().__init__(name="RPMNormalization", params=self.config.to_dict())

    def validate(self, matrix: ExpressionMatrix) -> list[str]:
        errors = super().validate(matrix)
        if matrix.data.size and np.nanmin(matrix.data) < 0:
            errors.append("RPM normalization requires non-negative counts")
        return errors

    def apply(self, matrix: ExpressionMatrix) -> ExpressionMatrix:
        errors = self.validate(matrix)
        if errors:
            raise InvalidInputError("; ".join(errors))
        return normalize_rpm(matrix, self.config).matrix


class TPMNormalization(Transform):
    """TPM normalization as a reusable transform."""

    def __init__(
        self,
        transcript_lengths: pd.DataFrame,
        config: NormalizationConfig | None = None,
    ):
        self.config = config or NormalizationConfig()
        self.transcript_lengths = transcript_lengths
        super().__init__(name="TPMNormalization", params=self.config.to_dict())

    def validate(self, matrix: ExpressionMatrix) -> list[str]:
        errors = super().validate(matrix)
        if matrix.data.size and np.nanmin(matrix.data) < 0:
            errors.append("TPM normalization requires non-negative counts")
        return errors

    def apply(self, matrix: ExpressionMatrix) -> ExpressionMatrix:
        errors = self.validate(matrix)
        if errors:
            raise InvalidInputError("; ".join(errors))
        return normalize_tpm(matrix, self.transcript_lengths, self.config).matrix
