"""
Biological-zero classification of imputed entries.

Imputation fills every zero, but not every zero in a single-cell matrix is a
technical dropout: some genes are genuinely silent in some cells. This module
estimates, for each zero entry, the probability that it is a dropout and
rolls imputed values back to 0 where that probability is too low.

Dropout Model (scImpute):
    Per gene, log10(x + 1.01) values are modelled as a two-component mixture:

        - Gamma(alpha, beta) with weight ``rate``: dropouts, piled up at
          log10(1.01)
        - Normal(mu, sigma) with weight 1 - rate: actual expression

    The parameters are fitted by EM. The posterior probability of the gamma
    component at a zero entry is its dropout probability. Entries that were
    non-zero get probability 1 (they are never rolled back). Genes with fewer
    than two distinct positive values carry no information about their
    expressed component and get probability 0: their zeros look biological.

Rollback Rule:
    entry(g, j) := 0   iff   original(g, j) == 0  and  P_dropout(g, j) < threshold

    - threshold = 0 never rolls anything back
    - threshold = 1 rolls back every original zero with probability < 1
    - NaN probabilities never roll back

References:
    - Li & Li (2018) scImpute. Nat Commun 9:997
    - Leote et al. (2022) ADImpute. Bioinformatics 38(9):2619-2620

Examples:
    >>> from dropimpute.quality.dropout import DropoutClassifier
    >>>
    >>> classifier = DropoutClassifier(threshold=0.2)
    >>> probs = classifier.dropout_probabilities(raw)
    >>> filtered = classifier.apply(imputed, raw, probabilities=probs)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats
from scipy.optimize import brentq
from scipy.special import digamma

from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.core.quality import QualityFlag
from dropimpute.exceptions import InvalidInputError, ShapeMismatchError

__all__ = [
    "MixtureParameters",
    "fit_gamma_normal_mixture",
    "estimate_dropout_probabilities",
    "set_biological_zeros",
    "DropoutClassifier",
]

logger = logging.getLogger(__name__)

MAX_GAMMA_SHAPE = 20.0
_MIN_SIGMA = 1e-8


@dataclass(frozen=True)
class MixtureParameters:
    """Fitted Gamma + Normal mixture for one gene.

    Attributes:
        rate: Weight of the gamma (dropout) component
        alpha: Gamma shape
        beta: Gamma rate
        mu: Normal mean
        sigma: Normal standard deviation
        n_iter: EM iterations run
        converged: True when the log-likelihood change fell below tol
    """

    rate: float
    alpha: float
    beta: float
    mu: float
    sigma: float
    n_iter: int
    converged: bool

    def dropout_weight(self, values: NDArray[np.float64]) -> NDArray[np.float64]:
        """Posterior probability of the gamma component at each value."""
        pz1 = self.rate * stats.gamma.pdf(values, a=self.alpha, scale=1.0 / self.beta)
        pz2 = (1.0 - self.rate) * stats.norm.pdf(values, loc=self.mu, scale=self.sigma)
        with np.errstate(invalid='ignore', divide='ignore'):
            pz = pz1 / (pz1 + pz2)
        pz[pz1 == 0] = 0.0
        return np.nan_to_num(pz, nan=0.0)

    def density(self, values: NDArray[np.float64]) -> NDArray[np.float64]:
        return (
            self.rate * stats.gamma.pdf(values, a=self.alpha, scale=1.0 / self.beta)
            + (1.0 - self.rate) * stats.norm.pdf(values, loc=self.mu, scale=self.sigma)
        )


def _gamma_shape(v: float) -> float:
    """Solve log(a) - digamma(a) = v for the gamma shape a (capped)."""
    if v <= 0:
        return MAX_GAMMA_SHAPE
    alpha0 = (3.0 - v + np.sqrt((v - 3.0) ** 2 + 24.0 * v)) / (12.0 * v)
    if alpha0 >= MAX_GAMMA_SHAPE:
        return MAX_GAMMA_SHAPE

    def objective(a):
        return np.log(a) - digamma(a) - v

    # log(a) - digamma(a) decreases monotonically; widen until the root is bracketed
    lo, hi = 0.9 * alpha0, 1.1 * alpha0
    for _ in range(60):
        if objective(lo) >= 0:
            break
        lo /= 2.0
    for _ in range(60):
        if objective(hi) <= 0:
            break
        hi *= 2.0
    return float(brentq(objective, lo, hi))


def _update_gamma(x: NDArray[np.float64], wt: NDArray[np.float64]) -> tuple[float, float] | None:
    tp_s = wt.sum()
    tp_t = np.sum(wt * x)
    if tp_s <= 0 or tp_t <= 0:
        return None
    tp_u = np.sum(wt * np.log(x))
    v = -tp_u / tp_s - np.log(tp_s / tp_t)
    alpha = _gamma_shape(float(v))
    beta = tp_s / tp_t * alpha
    return alpha, float(beta)


def fit_gamma_normal_mixture(
    values: NDArray[np.float64],
    point: float,
    max_iter: int = 100,
    tol: float = 0.5,
) -> MixtureParameters:
    """
    Fit the dropout mixture to one gene's log-transformed values by EM.

    Args:
        values: log10(x + pseudo_count) for one gene (no NaN)
        point: The value zeros map to, log10(pseudo_count)
        max_iter: Maximum EM iterations
        tol: Stop when the squared change in log10-likelihood is <= tol

    Returns:
        MixtureParameters

    Raises:
        InvalidInputError: If fewer than two distinct values lie above point
    """
    x = np.asarray(values, dtype=np.float64)
    expressed = x[x > point]
    if len(np.unique(expressed)) < 2:
        raise InvalidInputError(
            "Mixture fit needs at least two distinct expressed values"
        )

    rate = float(np.mean(x == point)) or 0.01
    alpha, beta = 0.5, 1.0
    mu = float(expressed.mean())
    sigma = float(expressed.std(ddof=1))

    params = MixtureParameters(rate, alpha, beta, mu, sigma, 0, False)
    loglik_old = 0.0
    converged = False
    n_iter = 0

    while n_iter < max_iter:
        wt1 = params.dropout_weight(x)
        wt2 = 1.0 - wt1

        rate = float(wt1.mean())
        if wt2.sum() > 0:
            mu = float(np.sum(wt2 * x) / wt2.sum())
            sigma = float(np.sqrt(np.sum(wt2 * (x - mu) ** 2) / wt2.sum()))
        sigma = max(sigma, _MIN_SIGMA)
        gamma_pars = _update_gamma(x, wt1)
        if gamma_pars is not None:
            alpha, beta = gamma_pars

        params = MixtureParameters(rate, alpha, beta, mu, sigma, n_iter + 1, False)
        n_iter += 1

        with np.errstate(divide='ignore'):
            loglik = float(np.sum(np.log10(params.density(x))))
        if not np.isfinite(loglik):
            logger.debug("Mixture fit: log-likelihood not finite, stopping EM")
            break
        eps = (loglik - loglik_old) ** 2
        loglik_old = loglik
        if eps <= tol:
            converged = True
            break

    return MixtureParameters(rate, alpha, beta, mu, sigma, n_iter, converged)


def _values(matrix) -> NDArray[np.float64]:
    if isinstance(matrix, ExpressionMatrix):
        return matrix.data
    if isinstance(matrix, pd.DataFrame):
        return matrix.to_numpy(dtype=np.float64)
    return np.asarray(matrix, dtype=np.float64)


def estimate_dropout_probabilities(
    matrix: ExpressionMatrix | pd.DataFrame | NDArray[np.float64],
    pseudo_count: float = 1.01,
    max_iter: int = 100,
    tol: float = 0.5,
    n_workers: int | None = None,
) -> NDArray[np.float64]:
    """
    Dropout probability for every entry of a (normalized) expression matrix.

    Args:
        matrix: Original, un-imputed expression (genes × samples)
        pseudo_count: Added before log10; must exceed 1 so zeros map above 0
        max_iter: Maximum EM iterations per gene
        tol: EM convergence tolerance
        n_workers: Threads for the per-gene fits (None/1 = sequential)

    Returns:
        Array of probabilities, same shape as the input. 1 for non-zero
        entries, NaN for NaN entries.
    """
    if pseudo_count <= 1:
        raise InvalidInputError(f"pseudo_count must be > 1, got {pseudo_count}")

    data = _values(matrix)
    if data.ndim != 2:
        raise InvalidInputError(f"Expected a 2-D matrix, got shape {data.shape}")

    point = float(np.log10(pseudo_count))
    probs = np.ones(data.shape, dtype=np.float64)
    probs[np.isnan(data)] = np.nan

    def fit_row(i: int) -> tuple[int, NDArray[np.float64] | None, bool]:
        row = data[i]
        observed = ~np.isnan(row)
        zeros = observed & (row == 0)
        if not zeros.any():
            return i, None, True
        positive = row[observed & (row > 0)]
        if len(np.unique(positive)) < 2:
            return i, np.zeros(int(zeros.sum())), True
        logged = np.log10(row[observed] + pseudo_count)
        params = fit_gamma_normal_mixture(logged, point, max_iter=max_iter, tol=tol)
        zero_probs = params.dropout_weight(np.full(int(zeros.sum()), point))
        return i, zero_probs, params.converged

    rows = range(data.shape[0])
    if n_workers is not None and n_workers > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            fitted = list(executor.map(fit_row, rows))
    else:
        fitted = [fit_row(i) for i in rows]

    n_unconverged = 0
    for i, zero_probs, converged in fitted:
        if zero_probs is None:
            continue
        row = data[i]
        with np.errstate(invalid='ignore'):
            zeros = row == 0
        probs[i, zeros] = zero_probs
        n_unconverged += int(not converged)

    if n_unconverged:
        logger.debug(f"Dropout model: EM hit max_iter for {n_unconverged} genes")
    logger.info(f"Estimated dropout probabilities for {data.shape[0]} genes")
    return probs


def set_biological_zeros(
    imputed: ExpressionMatrix,
    dropout_probabilities: NDArray[np.float64] | pd.DataFrame,
    threshold: float,
    was_zero: NDArray[np.bool_] | pd.DataFrame,
) -> ExpressionMatrix:
    """
    Roll imputed entries back to 0 where the zero looks biological.

    Args:
        imputed: Imputed matrix
        dropout_probabilities: Probability per entry that it is a dropout
        threshold: Entries with probability below this are set back to 0
        was_zero: True where the original (pre-imputation) entry was 0

    Returns:
        New matrix; rolled-back entries carry BIOLOGICAL_ZERO

    Raises:
        InvalidInputError: If threshold is outside [0, 1]
        ShapeMismatchError: If the three inputs differ in shape
    """
    if not (0.0 <= threshold <= 1.0):
        raise InvalidInputError(f"threshold must be in [0, 1], got {threshold}")

    probs = _values(dropout_probabilities)
    zero_mask = np.asarray(
        was_zero.to_numpy() if isinstance(was_zero, pd.DataFrame) else was_zero,
        dtype=bool,
    )
    if probs.shape != imputed.shape:
        raise ShapeMismatchError(
            f"dropout probabilities shape {probs.shape} does not match imputed {imputed.shape}"
        )
    if zero_mask.shape != imputed.shape:
        raise ShapeMismatchError(
            f"was_zero shape {zero_mask.shape} does not match imputed {imputed.shape}"
        )

    # NaN < threshold is False, so NaN probabilities never roll back
    with np.errstate(invalid='ignore'):
        rollback = zero_mask & (probs < threshold)

    data = imputed.data.copy()
    data[rollback] = 0.0
    flags = imputed.quality_flags.copy()
    flags[rollback] &= ~int(QualityFlag.IMPUTED)
    flags[rollback] |= QualityFlag.BIOLOGICAL_ZERO

    logger.info(
        f"Biological zeros: rolled back {int(rollback.sum())} of "
        f"{int(zero_mask.sum())} originally-zero entries (threshold={threshold})"
    )
    return imputed.with_data(data, quality_flags=flags)


class DropoutClassifier:
    """
    Estimate dropout probabilities and apply the biological-zero rollback.

    Args:
        threshold: Rollback threshold in [0, 1]
        pseudo_count: Log pseudo-count for the mixture fit (> 1)
        max_iter: Maximum EM iterations per gene
        tol: EM convergence tolerance
        n_workers: Threads for the per-gene fits
    """

    def __init__(
        self,
        threshold: float = 0.5,
        pseudo_count: float = 1.01,
        max_iter: int = 100,
        tol: float = 0.5,
        n_workers: int | None = None,
    ):
        if not (0.0 <= threshold <= 1.0):
            raise InvalidInputError(f"threshold must be in [0, 1], got {threshold}")
        self.threshold = threshold
        self.pseudo_count = pseudo_count
        self.max_iter = max_iter
        self.tol = tol
        self.n_workers = n_workers

    def dropout_probabilities(self, matrix) -> NDArray[np.float64]:
        return estimate_dropout_probabilities(
            matrix,
            pseudo_count=self.pseudo_count,
            max_iter=self.max_iter,
            tol=self.tol,
            n_workers=self.n_workers,
        )

    def apply(
        self,
        imputed: ExpressionMatrix,
        original: ExpressionMatrix,
        probabilities: NDArray[np.float64] | None = None,
    ) -> ExpressionMatrix:
        """Roll back imputed entries of ``imputed`` whose original zero looks biological."""
        if original.shape != imputed.shape:
            raise ShapeMismatchError(
                f"original shape {original.shape} does not match imputed {imputed.shape}"
            )
        if probabilities is None:
            probabilities = self.dropout_probabilities(original)
        with np.errstate(invalid='ignore'):
            was_zero = original.data == 0
        return set_biological_zeros(imputed, probabilities, self.threshold, was_zero)

    def __repr__(self) -> str:
        return f"DropoutClassifier(threshold={self.threshold})"
