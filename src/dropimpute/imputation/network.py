"""
Network-based imputation from an externally fitted gene regulatory model.

Each target gene with a fitted model is predicted, in every sample, as a
linear combination of a sparse set of predictor genes in the same sample:

    x̂[g, j] = intercept[g] + Σ_k coef[g, k] · x[pred_k, j]

The model is fitted elsewhere (e.g. penalized regression on a reference
atlas) and consumed here as an opaque table; this module never fits it.

Order Independence:
    Predictor values are always read from the input matrix as handed to the
    method (the masked matrix during evaluation, the raw matrix during final
    imputation), never from values imputed for other genes in the same call.
    All targets are therefore predicted in one sparse product and the result
    does not depend on gene order.

Rules:
    - Only zero (and NaN) entries of a target gene are replaced; observed
      values pass through
    - NaN predictor values contribute 0
    - Negative predictions are clipped to 0
    - Predictors absent from the matrix are dropped (logged once)
    - Genes without a model, or whose predictors are all absent, fall back to
      Baseline

Parameters (ImputationContext.params):
    models: Network models, any of
        - mapping gene → NetworkModel
        - mapping gene → (predictors, coefficients, intercept)
        - iterable of NetworkModel
        - coefficient DataFrame (targets × [intercept, predictors...])
    gene_means: Optional override for the Baseline fallback

Examples:
    >>> models = models_from_coefficients(coef_table)
    >>> context = ImputationContext(params={"models": models})
    >>> imputed = NetworkImputer().impute(matrix, context)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import sparse

from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.exceptions import InvalidInputError
from dropimpute.imputation.base import NETWORK, ImputationContext
from dropimpute.imputation.baseline import impute_baseline

__all__ = [
    "NetworkModel",
    "NetworkImputer",
    "models_from_coefficients",
    "coerce_models",
    "impute_network",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class NetworkModel:
    """
    Linear model predicting one gene from a few others.

    Attributes:
        gene: Target gene
        predictors: Predictor gene identifiers
        coefficients: One coefficient per predictor
        intercept: Constant term
    """

    gene: str
    predictors: tuple[str, ...]
    coefficients: NDArray[np.float64]
    intercept: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "gene", str(self.gene))
        object.__setattr__(self, "predictors", tuple(str(p) for p in self.predictors))
        coefs = np.asarray(self.coefficients, dtype=np.float64).ravel()
        object.__setattr__(self, "coefficients", coefs)
        object.__setattr__(self, "intercept", float(self.intercept))

        if len(self.predictors) != len(coefs):
            raise InvalidInputError(
                f"Model for {self.gene}: {len(self.predictors)} predictors but "
                f"{len(coefs)} coefficients"
            )
        if not np.all(np.isfinite(coefs)) or not np.isfinite(self.intercept):
            raise InvalidInputError(f"Model for {self.gene} has non-finite coefficients")

    @property
    def n_predictors(self) -> int:
        return len(self.predictors)


def models_from_coefficients(
    table: pd.DataFrame,
    intercept_column: str = "intercept",
) -> dict[str, NetworkModel]:
    """
    Convert a coefficient table into NetworkModels.

    Args:
        table: Rows = target genes, columns = predictor genes plus an
            optional intercept column. Zero coefficients are ignored, as are
            self-loops.
        intercept_column: Name of the intercept column

    Returns:
        Mapping gene → NetworkModel (genes with no non-zero term are omitted)
    """
    table = table.fillna(0.0)
    if intercept_column in table.columns:
        intercepts = table[intercept_column].astype(float)
        coefs = table.drop(columns=[intercept_column])
    else:
        intercepts = pd.Series(0.0, index=table.index)
        coefs = table

    predictors = np.asarray([str(c) for c in coefs.columns], dtype=object)
    values = coefs.to_numpy(dtype=np.float64)

    models: dict[str, NetworkModel] = {}
    for i, gene in enumerate(table.index.astype(str)):
        nz = np.flatnonzero((values[i] != 0) & (predictors != gene))
        intercept = float(intercepts.iloc[i])
        if len(nz) == 0 and intercept == 0:
            continue
        models[gene] = NetworkModel(
            gene=gene,
            predictors=tuple(predictors[nz]),
            coefficients=values[i, nz],
            intercept=intercept,
        )
    return models


def coerce_models(models) -> dict[str, NetworkModel]:
    """Normalize the accepted model representations to gene → NetworkModel."""
    if models is None:
        return {}
    if isinstance(models, pd.DataFrame):
        return models_from_coefficients(models)
    if isinstance(models, Mapping):
        out: dict[str, NetworkModel] = {}
        for gene, model in models.items():
            if isinstance(model, NetworkModel):
                out[str(gene)] = model
            else:
                try:
                    predictors, coefficients, intercept = model
                except (TypeError, ValueError):
                    raise InvalidInputError(
                        f"Model for {gene} must be a NetworkModel or a "
                        f"(predictors, coefficients, intercept) tuple"
                    ) from None
                out[str(gene)] = NetworkModel(gene, tuple(predictors), coefficients, intercept)
        return out
    if isinstance(models, Iterable):
        out = {}
        for model in models:
            if not isinstance(model, NetworkModel):
                raise InvalidInputError(f"Expected NetworkModel, got {type(model)}")
            out[model.gene] = model
        return out
    raise InvalidInputError(f"Unsupported network model container: {type(models)}")


def _weight_matrix(
    models: Mapping[str, NetworkModel],
    gene_ids: pd.Index,
) -> tuple[sparse.csr_matrix, NDArray[np.float64], NDArray[np.bool_]]:
    """
    Assemble the sparse weight matrix W (genes × genes) and intercepts b.

    Returns:
        (W, b, has_model) where has_model marks genes predicted by the network
    """
    n = len(gene_ids)
    position = {g: i for i, g in enumerate(gene_ids)}
    rows: list[int] = []
    cols: list[int] = []
    vals: list[float] = []
    intercepts = np.zeros(n)
    has_model = np.zeros(n, dtype=bool)
    absent: set[str] = set()
    n_outside = 0

    for gene, model in models.items():
        target = position.get(gene)
        if target is None:
            n_outside += 1
            continue
        usable = 0
        for pred, coef in zip(model.predictors, model.coefficients):
            src = position.get(pred)
            if src is None:
                absent.add(pred)
                continue
            rows.append(target)
            cols.append(src)
            vals.append(coef)
            usable += 1
        if usable or model.n_predictors == 0:
            has_model[target] = True
            intercepts[target] = model.intercept

    if absent:
        logger.warning(
            f"Network: dropped {len(absent)} predictor genes absent from the matrix, "
            f"e.g. {sorted(absent)[:5]}"
        )
    if n_outside:
        logger.debug(f"Network: {n_outside} models target genes absent from the matrix")

    weights = sparse.csr_matrix((vals, (rows, cols)), shape=(n, n))
    return weights, intercepts, has_model


def impute_network(
    matrix: ExpressionMatrix,
    models: Mapping[str, NetworkModel],
    gene_means: NDArray[np.float64] | pd.Series | None = None,
) -> NDArray[np.float64]:
    """
    Impute zero entries from predictor genes, falling back to Baseline.

    Args:
        matrix: Input matrix (read-only snapshot for all predictions)
        models: gene → NetworkModel
        gene_means: Optional means for the Baseline fallback

    Returns:
        Imputed values (new array)
    """
    weights, intercepts, has_model = _weight_matrix(models, matrix.gene_ids)

    # Baseline everywhere first; network rows are overwritten below
    result = impute_baseline(matrix, means=gene_means)

    if has_model.any():
        snapshot = np.nan_to_num(matrix.data, nan=0.0)
        predicted = np.asarray(weights @ snapshot) + intercepts[:, None]
        np.clip(predicted, 0.0, None, out=predicted)

        with np.errstate(invalid='ignore'):
            to_fill = ((matrix.data == 0) | np.isnan(matrix.data)) & has_model[:, None]
        result[to_fill] = predicted[to_fill]

    logger.debug(
        f"Network: {int(has_model.sum())} genes predicted by the network, "
        f"{int((~has_model).sum())} by Baseline fallback"
    )
    return result


class NetworkImputer:
    """Imputation from externally fitted per-gene linear network models."""

    @property
    def name(self) -> str:
        return NETWORK

    def impute(self, matrix: ExpressionMatrix, context: ImputationContext) -> NDArray[np.float64]:
        models = coerce_models(context.get("models"))
        if not models:
            logger.warning("Network: no models supplied; every gene uses the Baseline fallback")
        return impute_network(matrix, models, gene_means=context.get("gene_means"))

    def __repr__(self) -> str:
        return "NetworkImputer()"
