"""
Core data structures for the dropout imputation engine.

1. ExpressionMatrix: genes × samples matrix with identifiers and quality tracking
2. QualityFlag: bitwise flags recording per-entry provenance
3. Transform: abstract base class for immutable matrix transformations

Examples:
    >>> from dropimpute.core import ExpressionMatrix, QualityFlag
    >>>
    >>> matrix = ExpressionMatrix.from_frame(counts_df)
    >>> n_zero = matrix.flagged(QualityFlag.ORIGINAL_ZERO).sum()
"""

from dropimpute.core.biomatrix import ExpressionMatrix, initial_flags
from dropimpute.core.quality import QualityFlag
from dropimpute.core.transform import Transform

__all__ = [
    'ExpressionMatrix',
    'QualityFlag',
    'Transform',
    'initial_flags',
]
