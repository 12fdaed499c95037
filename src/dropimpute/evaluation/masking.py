"""
Random masking of observed expression for hide-and-score evaluation.

To judge how well a method recovers dropouts we need zeros whose true value is
known. The Masker manufactures them: each strictly positive entry is hidden
(set to zero) with probability p, independently per entry. Methods are then run
on the masked matrix and scored only at the hidden positions.

Invariants:
    - Only strictly positive entries are ever masked (zeros and NaN never are)
    - Each positive entry is an independent Bernoulli(p) trial
    - The same seed always produces the same mask
    - A gene without positive entries has an empty mask row; its error is
      undefined (NaN) downstream and the gene is reported, not dropped

Examples:
    >>> from dropimpute.evaluation.masking import mask_matrix
    >>>
    >>> result = mask_matrix(matrix, probability=0.1, seed=42)
    >>> result.mask.sum()          # number of hidden entries
    >>> result.masked.data         # input with hidden entries set to 0
    >>> result.original.data       # untouched snapshot
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.core.quality import QualityFlag
from dropimpute.exceptions import InvalidInputError

__all__ = ["MaskResult", "Masker", "mask_matrix"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaskResult:
    """
    Output of one masking round.

    Attributes:
        original: Snapshot of the pre-mask matrix (OriginalValues)
        masked: Input with masked positions set to 0 and flagged MASKED
        mask: Boolean matrix, True where an entry was hidden
        probability: Per-entry masking probability used
        seed: Seed used (None = unseeded)
    """

    original: ExpressionMatrix
    masked: ExpressionMatrix
    mask: NDArray[np.bool_]
    probability: float
    seed: int | None = None

    @property
    def n_masked(self) -> int:
        """Total number of masked entries."""
        return int(self.mask.sum())

    @property
    def n_masked_per_gene(self) -> pd.Series:
        """Number of masked entries per gene."""
        return pd.Series(
            self.mask.sum(axis=1).astype(int),
            index=self.original.gene_ids,
            name="n_masked",
        )

    @property
    def unmasked_genes(self) -> list[str]:
        """Genes with an empty mask row (their MSE will be NaN)."""
        empty = ~self.mask.any(axis=1)
        return self.original.gene_ids[empty].tolist()


def mask_matrix(
    matrix: ExpressionMatrix,
    probability: float,
    seed: int | None = None,
) -> MaskResult:
    """
    Hide a random subset of the non-zero entries of ``matrix``.

    Args:
        matrix: Validated expression matrix
        probability: Chance that each strictly positive entry is masked,
            in (0, 1]
        seed: Random seed for reproducibility

    Returns:
        MaskResult with original snapshot, masked matrix and mask

    Raises:
        InvalidInputError: If probability is outside (0, 1]
    """
    if not 0 < probability <= 1:
        raise InvalidInputError(
            f"mask probability must be in (0, 1], got {probability}"
        )

    rng = np.random.default_rng(seed)

    with np.errstate(invalid='ignore'):
        positive = matrix.data > 0

    # One Bernoulli draw per entry; only positive entries are eligible
    mask = (rng.random(matrix.shape) < probability) & positive

    masked_data = matrix.data.copy()
    masked_data[mask] = 0.0

    masked_flags = matrix.quality_flags.copy()
    masked_flags[mask] |= QualityFlag.MASKED

    result = MaskResult(
        original=matrix.copy(),
        masked=matrix.with_data(masked_data, quality_flags=masked_flags),
        mask=mask,
        probability=float(probability),
        seed=seed,
    )

    n_positive = int(positive.sum())
    n_empty = len(result.unmasked_genes)
    logger.info(
        f"Masked {result.n_masked}/{n_positive} non-zero entries "
        f"(p={probability}, seed={seed})"
    )
    if n_empty:
        logger.info(f"{n_empty} genes have no masked entries and will score NaN")

    return result


class Masker:
    """
    Reusable masking configuration.

    Args:
        probability: Per-entry masking probability in (0, 1]
        seed: Random seed for reproducibility

    Examples:
        >>> masker = Masker(probability=0.2, seed=0)
        >>> result = masker.apply(matrix)
    """

    def __init__(self, probability: float = 0.1, seed: int | None = None):
        if not 0 < probability <= 1:
            raise InvalidInputError(
                f"mask probability must be in (0, 1], got {probability}"
            )
        self.probability = probability
        self.seed = seed

    def apply(self, matrix: ExpressionMatrix) -> MaskResult:
        return mask_matrix(matrix, self.probability, seed=self.seed)

    def __repr__(self) -> str:
        return f"Masker(probability={self.probability}, seed={self.seed})"
