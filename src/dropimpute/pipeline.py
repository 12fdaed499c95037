"""
End-to-end evaluation and imputation.

Two entry points tie the components together:

evaluate_methods():
    validate → mask a fraction of non-zero entries → run every method on the
    masked matrix → score per-gene MSE at masked entries → pick the best
    method per gene.

impute():
    validate → resolve the methods to run ("ensemble" expands to the methods
    named in a per-gene choice, obtained from evaluate_methods() when not
    supplied) → run them on the full matrix → compose the ensemble →
    optionally roll back imputed entries that look like biological zeros.

Failure Semantics:
    - Invalid input or parameters raise InvalidInputError before any work
    - A failing method is logged, recorded in ``failed_methods`` (and as an
      all-NaN error column during evaluation); the others continue
    - If every requested method fails, MethodExecutionError is raised
    - An ensemble that references a method without a result is recorded
      under ``failed_methods["ensemble"]``; the individual results are kept

Examples:
    >>> from dropimpute import evaluate_methods, impute
    >>>
    >>> evaluation = evaluate_methods(counts, methods=["baseline", "network"],
    ...                               method_params={"network": {"models": models}})
    >>> evaluation.method_counts()
    >>>
    >>> result = impute(counts, methods=["ensemble"],
    ...                 method_choice=evaluation.choice,
    ...                 method_params={"network": {"models": models}},
    ...                 true_zero_threshold=0.2)
    >>> result.final
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from dropimpute.config import PipelineConfig
from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.evaluation.masking import MaskResult, mask_matrix
from dropimpute.evaluation.scoring import score_methods
from dropimpute.evaluation.selection import select_methods, selection_summary
from dropimpute.exceptions import (
    InvalidInputError,
    MethodExecutionError,
    MissingMethodResultError,
    ShapeMismatchError,
)
from dropimpute.imputation.base import (
    BASELINE,
    ENSEMBLE,
    MethodRegistry,
    normalize_method_name,
    shared_registry,
)
from dropimpute.imputation.baseline import gene_means
from dropimpute.imputation.ensemble import compose_ensemble
from dropimpute.imputation.runner import MethodRunResult, run_methods
from dropimpute.quality.dropout import estimate_dropout_probabilities, set_biological_zeros
from dropimpute.quality.validation import validate_matrix

__all__ = ["EvaluationResult", "ImputationResult", "evaluate_methods", "impute"]

logger = logging.getLogger(__name__)

MethodParams = Mapping[str, Mapping[str, Any]]


@dataclass
class EvaluationResult:
    """
    Outcome of evaluate_methods().

    Attributes:
        choice: MethodChoice (gene → best method)
        errors: PerGeneError table (genes × methods)
        mask: The masking round the methods were scored on
        failed_methods: Method → failure message
        config: Configuration used
    """

    choice: pd.Series
    errors: pd.DataFrame
    mask: MaskResult
    failed_methods: dict[str, str] = field(default_factory=dict)
    config: PipelineConfig = field(default_factory=PipelineConfig)

    def method_counts(self) -> pd.Series:
        """Number of genes assigned to each method."""
        return selection_summary(self.choice)

    def summary(self) -> pd.DataFrame:
        """One row per method: genes chosen, genes scored, mean MSE, failure."""
        counts = self.method_counts()
        rows = []
        for method in self.errors.columns:
            column = self.errors[method]
            rows.append({
                "method": method,
                "n_genes_chosen": int(counts.get(method, 0)),
                "n_genes_scored": int(column.notna().sum()),
                "mean_mse": float(column.mean()) if column.notna().any() else np.nan,
                "failed": method in self.failed_methods,
            })
        return pd.DataFrame(rows).set_index("method")


@dataclass
class ImputationResult:
    """
    Outcome of impute().

    Attributes:
        imputations: Method → imputed matrix (includes "ensemble" if built)
        zero_filtered: Method → matrix after biological-zero rollback, or
            None when no threshold was given
        dropout_probabilities: Probabilities used for the rollback, or None
        method_choice: Per-gene choice behind the ensemble, or None
        failed_methods: Method → failure message
    """

    imputations: dict[str, ExpressionMatrix]
    zero_filtered: Optional[dict[str, ExpressionMatrix]] = None
    dropout_probabilities: Optional[NDArray[np.float64]] = None
    method_choice: Optional[pd.Series] = None
    failed_methods: dict[str, str] = field(default_factory=dict)

    @property
    def final(self) -> ExpressionMatrix:
        """
        The headline result: the ensemble if built, else the first successful
        method; zero-filtered when a rollback was applied.
        """
        source = self.zero_filtered if self.zero_filtered else self.imputations
        if ENSEMBLE in source:
            return source[ENSEMBLE]
        return next(iter(source.values()))


def _resolve_methods(methods: Union[str, Sequence[str], None]) -> list[str]:
    if methods is None:
        return []
    if isinstance(methods, str):
        methods = [methods]
    resolved: list[str] = []
    for m in methods:
        key = normalize_method_name(m)
        if not key:
            raise InvalidInputError("Method names must be non-empty")
        if key not in resolved:
            resolved.append(key)
    return resolved


def _copy_params(method_params: Optional[MethodParams]) -> dict[str, dict[str, Any]]:
    """Per-method parameter dicts, one fresh dict per method."""
    params: dict[str, dict[str, Any]] = {}
    for name, values in (method_params or {}).items():
        if values is not None and not isinstance(values, Mapping):
            raise InvalidInputError(f"Parameters for '{name}' must be a mapping")
        params[normalize_method_name(name)] = dict(values or {})
    return params


def _all_failed_error(run: MethodRunResult) -> MethodExecutionError:
    details = "; ".join(run.failure_messages().values())
    return MethodExecutionError(
        ",".join(run.failed), f"every requested method failed ({details})"
    )


def _coerce_choice(choice) -> pd.Series:
    if isinstance(choice, pd.DataFrame):
        if choice.shape[1] != 1:
            raise InvalidInputError("method_choice DataFrame must have exactly one column")
        choice = choice.iloc[:, 0]
    elif isinstance(choice, Mapping):
        choice = pd.Series(dict(choice), dtype=object)
    elif not isinstance(choice, pd.Series):
        raise InvalidInputError(
            f"method_choice must be a Series or mapping gene → method, got {type(choice)}"
        )
    if choice.isna().any():
        raise InvalidInputError("method_choice contains genes without a method")
    out = choice.astype(str).map(normalize_method_name)
    out.index = out.index.astype(str)
    return out.rename("method")


def evaluate_methods(
    matrix: Union[ExpressionMatrix, pd.DataFrame],
    methods: Optional[Sequence[str]] = None,
    mask_probability: Optional[float] = None,
    method_params: Optional[MethodParams] = None,
    config: Optional[PipelineConfig] = None,
    registry: Optional[MethodRegistry] = None,
) -> EvaluationResult:
    """
    Score imputation methods on masked data and pick the best per gene.

    Args:
        matrix: Normalized expression (genes × samples)
        methods: Methods to evaluate (default: every registered method)
        mask_probability: Overrides config.evaluation.mask_probability
        method_params: Method → parameters
        config: Pipeline configuration
        registry: Method registry (default: shared registry)

    Returns:
        EvaluationResult

    Raises:
        InvalidInputError: Invalid matrix or parameters
        MethodExecutionError: Every method failed
    """
    config = config or PipelineConfig()
    registry = registry or shared_registry()
    matrix = validate_matrix(matrix)

    names = [m for m in _resolve_methods(methods) if m != ENSEMBLE] or registry.names()
    if not names:
        raise InvalidInputError("No imputation methods to evaluate")

    fallback = config.evaluation.fallback_method
    if fallback is not None and fallback not in names:
        raise InvalidInputError(
            f"fallback method '{fallback}' is not among evaluated methods {names}"
        )

    probability = (
        config.evaluation.mask_probability if mask_probability is None else mask_probability
    )
    params = _copy_params(method_params)
    mask = mask_matrix(matrix, probability, seed=config.evaluation.seed)

    if BASELINE in names:
        # Baseline is scored as the pre-mask per-gene mean predictor
        params.setdefault(BASELINE, {}).setdefault(
            "gene_means", pd.Series(gene_means(matrix), index=matrix.gene_ids)
        )

    logger.info(f"Evaluating {len(names)} methods: {names}")
    run = run_methods(
        mask.masked,
        names,
        method_params=params,
        registry=registry,
        seed=config.evaluation.seed,
        n_workers=config.execution.n_workers,
        timeout=config.execution.timeout,
        stage="evaluation",
    )
    if run.all_failed:
        raise _all_failed_error(run)

    errors = score_methods(
        mask, run.imputations, failed=run.failures, baseline_methods=(BASELINE,)
    )
    errors = errors[[m for m in names if m in errors.columns]]

    priority = list(config.evaluation.method_priority or names)
    choice = select_methods(errors, priority=priority, fallback=fallback)

    return EvaluationResult(
        choice=choice,
        errors=errors,
        mask=mask,
        failed_methods=run.failure_messages(),
        config=config,
    )


def impute(
    matrix: Union[ExpressionMatrix, pd.DataFrame],
    methods: Union[str, Sequence[str]] = ENSEMBLE,
    method_choice: Optional[Union[pd.Series, Mapping[str, str]]] = None,
    true_zero_threshold: Optional[float] = None,
    dropout_probabilities: Optional[Union[NDArray[np.float64], pd.DataFrame]] = None,
    method_params: Optional[MethodParams] = None,
    config: Optional[PipelineConfig] = None,
    registry: Optional[MethodRegistry] = None,
) -> ImputationResult:
    """
    Impute dropouts with one or several methods and/or a per-gene ensemble.

    Args:
        matrix: Normalized expression (genes × samples)
        methods: Method name(s); "ensemble" builds the per-gene ensemble
        method_choice: Gene → method for the ensemble. Estimated with
            evaluate_methods() when "ensemble" is requested without one.
        true_zero_threshold: Roll imputed entries back to 0 where the dropout
            probability is below this value (None = no rollback)
        dropout_probabilities: Precomputed probabilities (same shape as matrix)
        method_params: Method → parameters
        config: Pipeline configuration
        registry: Method registry (default: shared registry)

    Returns:
        ImputationResult

    Raises:
        InvalidInputError: Invalid matrix, threshold or choice
        ShapeMismatchError: dropout_probabilities does not match the matrix
        MethodExecutionError: Every requested method failed
    """
    config = config or PipelineConfig()
    registry = registry or shared_registry()
    matrix = validate_matrix(matrix)
    requested = _resolve_methods(methods)
    if not requested:
        raise InvalidInputError("No imputation methods requested")

    if true_zero_threshold is not None and not (0.0 <= true_zero_threshold <= 1.0):
        raise InvalidInputError(
            f"true_zero_threshold must be in [0, 1], got {true_zero_threshold}"
        )
    probabilities = None
    if dropout_probabilities is not None:
        probabilities = np.asarray(
            dropout_probabilities.to_numpy() if isinstance(dropout_probabilities, pd.DataFrame)
            else dropout_probabilities,
            dtype=np.float64,
        )
        if probabilities.shape != matrix.shape:
            raise ShapeMismatchError(
                f"dropout_probabilities shape {probabilities.shape} does not match "
                f"matrix shape {matrix.shape}"
            )

    want_ensemble = ENSEMBLE in requested
    singles = [m for m in requested if m != ENSEMBLE]
    choice = None

    if want_ensemble:
        if method_choice is None:
            logger.info("No method choice supplied; evaluating methods first")
            evaluation = evaluate_methods(
                matrix,
                methods=singles or None,
                method_params=method_params,
                config=config,
                registry=registry,
            )
            choice = evaluation.choice
        else:
            choice = _coerce_choice(method_choice)

    to_run = list(singles)
    fallback = config.evaluation.fallback_method
    if choice is not None:
        to_run += [m for m in pd.unique(choice.to_numpy()) if m not in to_run]
        absent = ~matrix.gene_ids.isin(choice.index)
        if absent.any():
            if fallback is None:
                raise InvalidInputError(
                    f"{int(absent.sum())} genes have no method choice and no "
                    f"fallback_method is configured, e.g. {matrix.gene_ids[absent][:5].tolist()}"
                )
            if fallback not in to_run:
                to_run.append(fallback)

    run = run_methods(
        matrix,
        to_run,
        method_params=_copy_params(method_params),
        registry=registry,
        seed=config.evaluation.seed,
        n_workers=config.execution.n_workers,
        timeout=config.execution.timeout,
        stage="imputation",
    )
    if run.all_failed:
        raise _all_failed_error(run)

    imputations = dict(run.imputations)
    failed = run.failure_messages()

    if want_ensemble:
        try:
            imputations[ENSEMBLE] = compose_ensemble(
                choice, run.imputations, fallback=fallback
            )
        except MissingMethodResultError as e:
            logger.warning(f"Ensemble could not be built: {e}")
            failed[ENSEMBLE] = str(e)

    zero_filtered = None
    if true_zero_threshold is not None:
        if probabilities is None:
            probabilities = estimate_dropout_probabilities(
                matrix,
                pseudo_count=config.dropout.pseudo_count,
                max_iter=config.dropout.max_iter,
                tol=config.dropout.tol,
                n_workers=config.dropout.n_workers,
            )
        with np.errstate(invalid='ignore'):
            was_zero = matrix.data == 0
        zero_filtered = {
            name: set_biological_zeros(imputed, probabilities, true_zero_threshold, was_zero)
            for name, imputed in imputations.items()
        }

    return ImputationResult(
        imputations=imputations,
        zero_filtered=zero_filtered,
        dropout_probabilities=probabilities,
        method_choice=choice,
        failed_methods=failed,
    )
