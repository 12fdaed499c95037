"""
Quality flag system for tracking per-entry provenance in expression matrices.

Every entry of an ExpressionMatrix carries an integer of bitwise flags that
records what happened to it on the way through the engine. This is what lets
a user answer "which zeros were imputed?" or "which imputed values were rolled
back as biological zeros?" after the fact.

Biological Context:
    In single-cell RNA-seq a zero is ambiguous:
    - Dropout: the gene is expressed but no transcript was captured
    - Biological zero: the gene is genuinely silent in that cell

    Imputation replaces zeros with estimates; the biological-zero classifier
    then restores some of them. Both steps must remain auditable.

Engineering Design:
    IntFlag enables efficient bitwise operations:
    - Multiple flags per value: ORIGINAL_ZERO | IMPUTED
    - Fast checks: (flags & QualityFlag.IMPUTED) > 0
    - One int per entry

Examples:
    >>> from dropimpute.core.quality import QualityFlag
    >>>
    >>> flag = QualityFlag.ORIGINAL_ZERO | QualityFlag.IMPUTED
    >>> bool(flag & QualityFlag.IMPUTED)
    True
    >>>
    >>> # Count rolled-back entries
    >>> n_bio = np.sum((matrix.quality_flags & QualityFlag.BIOLOGICAL_ZERO) > 0)
"""

from __future__ import annotations

from enum import IntFlag

__all__ = ['QualityFlag']


class QualityFlag(IntFlag):
    """
    Bitwise flags for per-entry quality tracking.

    Attributes:
        ORIGINAL: Untouched measured value (0)
        ORIGINAL_ZERO: Entry was exactly zero in the input (1)
        MASKED: Hidden by the Masker for hide-and-score evaluation (2)
        IMPUTED: Value produced by an imputation method (4)
        MISSING_ORIGINAL: Entry was NaN (explicitly missing) in the input (8)
        BIOLOGICAL_ZERO: Imputed value rolled back to zero by the
            DropoutClassifier (16)
    """

    ORIGINAL = 0
    """Untouched measured value."""

    ORIGINAL_ZERO = 1
    """
    Zero in the raw matrix: either a technical dropout or a biological zero.
    These are the entries imputation methods fill in.
    """

    MASKED = 2
    """
    Strictly positive entry hidden (set to zero) for evaluation.
    Only appears on masked copies, never on final imputations.
    """

    IMPUTED = 4
    """Value written by an imputation method in place of a zero or NaN."""

    MISSING_ORIGINAL = 8
    """Explicitly missing (NaN) in the raw matrix."""

    BIOLOGICAL_ZERO = 16
    """
    Imputed value forced back to zero because its dropout probability was
    below the biological-zero threshold.
    """
