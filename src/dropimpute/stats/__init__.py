"""
Normalization of count matrices prior to imputation.

Examples:
    >>> from dropimpute.stats import normalize_rpm
    >>> normalized = normalize_rpm(counts).matrix
"""

from dropimpute.stats.normalization import (
    NormalizationResult,
    RPMNormalization,
    TPMNormalization,
    gene_lengths,
    normalize_rpm,
    normalize_tpm,
)

__all__ = [
    'NormalizationResult',
    'RPMNormalization',
    'TPMNormalization',
    'gene_lengths',
    'normalize_rpm',
    'normalize_tpm',
]
