"""
Input validation and biological-zero classification.

Examples:
    >>> from dropimpute.quality import validate_matrix, DropoutClassifier
    >>>
    >>> matrix = validate_matrix(counts_df)
    >>> filtered = DropoutClassifier(threshold=0.2).apply(imputed, matrix)
"""

from dropimpute.quality.dropout import (
    DropoutClassifier,
    MixtureParameters,
    estimate_dropout_probabilities,
    fit_gamma_normal_mixture,
    set_biological_zeros,
)
from dropimpute.quality.validation import MatrixValidator, validate_matrix

__all__ = [
    'MatrixValidator',
    'validate_matrix',
    'DropoutClassifier',
    'MixtureParameters',
    'estimate_dropout_probabilities',
    'fit_gamma_normal_mixture',
    'set_biological_zeros',
]
