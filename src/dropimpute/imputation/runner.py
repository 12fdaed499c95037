"""
Execution of several imputation methods on the same matrix.

The runner looks every requested method up in a registry, runs them
(concurrently on a thread pool by default), checks what each returns and
collects the results. A method that raises, returns something unusable or
exceeds the timeout is recorded as a MethodExecutionError; the others carry
on. Results are always returned in request order, independent of completion
order.

Concurrency Model:
    - One task per method; tasks share only the read-only input matrix
    - Each task allocates its own output; aggregation happens after the join
    - timeout bounds the whole batch (seconds from submission). Threads that
      are still running afterwards are abandoned, not killed, and their
      results are discarded.

Output Normalization:
    - ndarray: must match the input shape
    - DataFrame / ExpressionMatrix: must carry the input's genes and samples
      (any order; reordered to the input layout)
    - Values must be finite; negatives are clipped to 0
    - QualityFlag.IMPUTED is set where a zero/NaN input entry changed

Examples:
    >>> from dropimpute.imputation.runner import run_methods
    >>>
    >>> run = run_methods(
    ...     matrix,
    ...     methods=["baseline", "network"],
    ...     method_params={"network": {"models": models}},
    ...     n_workers=2,
    ...     timeout=600,
    ... )
    >>> run.imputations["baseline"]
    >>> run.failures          # {} when everything succeeded
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from dropimpute.core.biomatrix import ExpressionMatrix
from dropimpute.core.quality import QualityFlag
from dropimpute.exceptions import MethodExecutionError
from dropimpute.imputation.base import (
    ImputationContext,
    MethodRegistry,
    normalize_method_name,
    shared_registry,
)

__all__ = ["MethodRunResult", "run_method", "run_methods", "coerce_output"]

logger = logging.getLogger(__name__)


@dataclass
class MethodRunResult:
    """
    Outcome of running a batch of methods.

    Attributes:
        imputations: Method name → imputed matrix, for successful methods,
            in request order
        failures: Method name → MethodExecutionError, for failed methods
        durations: Method name → wall-clock seconds (successful methods)
    """

    imputations: dict[str, ExpressionMatrix] = field(default_factory=dict)
    failures: dict[str, MethodExecutionError] = field(default_factory=dict)
    durations: dict[str, float] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        return list(self.imputations)

    @property
    def failed(self) -> list[str]:
        return list(self.failures)

    @property
    def all_failed(self) -> bool:
        return not self.imputations and bool(self.failures)

    def failure_messages(self) -> dict[str, str]:
        return {name: str(err) for name, err in self.failures.items()}


def coerce_output(name: str, output: Any, matrix: ExpressionMatrix) -> ExpressionMatrix:
    """
    Check a method's raw output and turn it into an ExpressionMatrix.

    Raises:
        MethodExecutionError: If the output has the wrong type, shape,
            identifiers or non-finite values
    """
    if isinstance(output, ExpressionMatrix):
        output = output.to_frame()

    if isinstance(output, pd.DataFrame):
        genes = pd.Index(output.index.astype(str))
        samples = pd.Index(output.columns.astype(str))
        if not (genes.sort_values().equals(matrix.gene_ids.sort_values())
                and samples.sort_values().equals(matrix.sample_ids.sort_values())):
            raise MethodExecutionError(
                name, "returned a matrix whose genes/samples differ from the input"
            )
        output = output.copy()
        output.index = genes
        output.columns = samples
        values = output.reindex(index=matrix.gene_ids, columns=matrix.sample_ids)
        try:
            values = values.to_numpy(dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise MethodExecutionError(name, f"returned non-numeric output: {e}", cause=e)
    else:
        try:
            values = np.array(output, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise MethodExecutionError(name, f"returned non-numeric output: {e}", cause=e)

    if values.shape != matrix.shape:
        raise MethodExecutionError(
            name, f"returned shape {values.shape}, expected {matrix.shape}"
        )
    if not np.all(np.isfinite(values)):
        n_bad = int(np.sum(~np.isfinite(values)))
        raise MethodExecutionError(name, f"returned {n_bad} non-finite values")

    n_negative = int(np.sum(values < 0))
    if n_negative:
        logger.debug(f"{name}: clipped {n_negative} negative values to 0")
        values = np.clip(values, 0.0, None)

    with np.errstate(invalid='ignore'):
        was_empty = (matrix.data == 0) | np.isnan(matrix.data)
        changed = was_empty & (values != np.nan_to_num(matrix.data, nan=0.0))
    flags = matrix.quality_flags.copy()
    flags[changed] |= QualityFlag.IMPUTED

    return matrix.with_data(values, quality_flags=flags)


def run_method(
    name: str,
    matrix: ExpressionMatrix,
    params: Mapping[str, Any] | None = None,
    registry: MethodRegistry | None = None,
    seed: int | None = None,
    stage: str = "imputation",
) -> ExpressionMatrix:
    """
    Run a single method and validate its output.

    Raises:
        MethodExecutionError: If the method is unknown, raises, or returns an
            unusable result
    """
    registry = registry or shared_registry()
    try:
        method = registry.get(name)
    except KeyError as e:
        raise MethodExecutionError(name, str(e.args[0]), cause=e)

    context = ImputationContext(params=dict(params or {}), seed=seed, stage=stage)
    try:
        output = method.impute(matrix, context)
    except MethodExecutionError:
        raise
    except Exception as e:
        raise MethodExecutionError(name, f"{type(e).__name__}: {e}", cause=e)

    return coerce_output(name, output, matrix)


def _timed(name, matrix, params, registry, seed, stage):
    start = time.perf_counter()
    result = run_method(name, matrix, params, registry, seed, stage)
    return result, time.perf_counter() - start


def run_methods(
    matrix: ExpressionMatrix,
    methods: Sequence[str],
    method_params: Mapping[str, Mapping[str, Any]] | None = None,
    registry: MethodRegistry | None = None,
    seed: int | None = None,
    n_workers: int | None = None,
    timeout: float | None = None,
    stage: str = "imputation",
) -> MethodRunResult:
    """
    Run several methods on ``matrix`` with failure isolation.

    Args:
        matrix: Input matrix shared (read-only) by all methods
        methods: Method names, in priority/request order
        method_params: Method name → parameters for that method
        registry: Registry to resolve names (default: shared registry)
        seed: Seed passed to every method
        n_workers: Thread count; 1 with no timeout runs sequentially
        timeout: Seconds allowed for the batch; unfinished methods fail
        stage: "evaluation" or "imputation", passed to methods

    Returns:
        MethodRunResult
    """
    registry = registry or shared_registry()
    params = {normalize_method_name(k): v for k, v in (method_params or {}).items()}

    names: list[str] = []
    for m in methods:
        key = normalize_method_name(m)
        if key not in names:
            names.append(key)

    result = MethodRunResult()
    outcomes: dict[str, tuple[ExpressionMatrix, float] | MethodExecutionError] = {}

    if not names:
        return result

    if timeout is None and (n_workers == 1 or len(names) == 1):
        for name in names:
            try:
                outcomes[name] = _timed(name, matrix, params.get(name), registry, seed, stage)
            except MethodExecutionError as e:
                outcomes[name] = e
    else:
        max_workers = min(n_workers or len(names), len(names))
        executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="impute")
        try:
            futures = {
                executor.submit(
                    _timed, name, matrix, params.get(name), registry, seed, stage
                ): name
                for name in names
            }
            done, not_done = wait(futures, timeout=timeout)
            for future in done:
                name = futures[future]
                try:
                    outcomes[name] = future.result()
                except MethodExecutionError as e:
                    outcomes[name] = e
            for future in not_done:
                name = futures[future]
                future.cancel()
                outcomes[name] = MethodExecutionError(
                    name, f"timed out after {timeout}s", timed_out=True
                )
        finally:
            # Do not block on abandoned (timed-out) threads
            executor.shutdown(wait=False, cancel_futures=True)

    for name in names:
        outcome = outcomes[name]
        if isinstance(outcome, MethodExecutionError):
            result.failures[name] = outcome
            logger.warning(f"Imputation method failed: {outcome}")
        else:
            imputed, seconds = outcome
            result.imputations[name] = imputed
            result.durations[name] = seconds
            logger.info(f"{name}: done in {seconds:.2f}s ({stage})")

    return result
