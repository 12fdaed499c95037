"""
Contract and registry for pluggable imputation methods.

Any callable that turns a (possibly masked) expression matrix into a full
imputed matrix of the same shape can take part in evaluation and ensembles.
Methods are looked up by name in a MethodRegistry, so new methods register
without touching the orchestrator.

A method is either:
    - an object satisfying the ImputationMethod protocol (``name`` property +
      ``impute(matrix, context)``), or
    - a plain function ``fn(matrix, context)``, wrapped in FunctionMethod

and returns an ndarray, a genes × samples DataFrame or an ExpressionMatrix.
The runner checks and normalizes whatever comes back.

Examples:
    >>> from dropimpute.imputation.base import register_method
    >>>
    >>> @register_method("half_mean")
    ... def half_mean(matrix, context):
    ...     data = matrix.data.copy()
    ...     means = np.nanmean(np.where(data > 0, data, np.nan), axis=1)
    ...     rows, cols = np.nonzero(data == 0)
    ...     data[rows, cols] = 0.5 * np.nan_to_num(means)[rows]
    ...     return data
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Protocol, Union, runtime_checkable

import numpy as np
import pandas as pd

from dropimpute.core.biomatrix import ExpressionMatrix

__all__ = [
    "BASELINE",
    "NETWORK",
    "ENSEMBLE",
    "ImputationContext",
    "ImputationMethod",
    "FunctionMethod",
    "MethodRegistry",
    "default_registry",
    "shared_registry",
    "register_method",
    "normalize_method_name",
]

BASELINE = "baseline"
NETWORK = "network"
ENSEMBLE = "ensemble"

MethodOutput = Union[np.ndarray, pd.DataFrame, ExpressionMatrix]


def normalize_method_name(name: str) -> str:
    """Method names are case-insensitive and stripped."""
    return str(name).strip().lower()


@dataclass(frozen=True)
class ImputationContext:
    """
    Per-call information handed to a method.

    Attributes:
        params: Method-specific parameters (e.g. network models, cluster
            labels). Never shared between methods.
        seed: Random seed; methods with randomness must use it
        stage: "evaluation" when running on a masked matrix,
            "imputation" for the final run on full data
    """

    params: dict[str, Any] = field(default_factory=dict)
    seed: int | None = None
    stage: str = "imputation"

    def get(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)


@runtime_checkable
class ImputationMethod(Protocol):
    """
    Protocol for imputation methods.

    Example:
        >>> class ZeroToOne:
        ...     @property
        ...     def name(self) -> str:
        ...         return "zero_to_one"
        ...
        ...     def impute(self, matrix, context):
        ...         return np.where(matrix.data == 0, 1.0, matrix.data)
    """

    @property
    def name(self) -> str:
        """Registry name of the method."""
        ...

    def impute(self, matrix: ExpressionMatrix, context: ImputationContext) -> MethodOutput:
        """
        Produce a full imputed matrix.

        Args:
            matrix: Input matrix; zeros (and NaN) are candidates for imputation
            context: Parameters, seed and stage for this call

        Returns:
            Matrix with the same shape and identifiers as ``matrix``
        """
        ...


class FunctionMethod:
    """Adapter turning ``fn(matrix, context)`` into an ImputationMethod."""

    def __init__(self, name: str, fn: Callable[[ExpressionMatrix, ImputationContext], MethodOutput]):
        self._name = normalize_method_name(name)
        self._fn = fn

    @property
    def name(self) -> str:
        return self._name

    def impute(self, matrix: ExpressionMatrix, context: ImputationContext) -> MethodOutput:
        return self._fn(matrix, context)

    def __repr__(self) -> str:
        return f"FunctionMethod({self._name!r}, {getattr(self._fn, '__name__', self._fn)!r})"


class MethodRegistry:
    """
    Name → method lookup table.

    Registration is guarded by a lock; lookups during a run only read.

    Examples:
        >>> registry = default_registry()
        >>> registry.register("my_method", my_function)
        >>> registry.names()
        ['baseline', 'network', 'my_method']
    """

    def __init__(self):
        self._methods: dict[str, ImputationMethod] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        method: ImputationMethod | Callable[..., MethodOutput],
        replace: bool = False,
    ) -> ImputationMethod:
        """
        Add a method under ``name``.

        Args:
            name: Registry key (case-insensitive). "ensemble" is reserved.
            method: ImputationMethod instance or plain function
            replace: Overwrite an existing registration

        Raises:
            ValueError: If the name is taken (and replace is False) or reserved
            TypeError: If method is neither an ImputationMethod nor callable
        """
        key = normalize_method_name(name)
        if key == ENSEMBLE:
            raise ValueError(f"'{ENSEMBLE}' is reserved for per-gene ensembles")
        if not key:
            raise ValueError("Method name must be non-empty")

        if not isinstance(method, ImputationMethod):
            if not callable(method):
                raise TypeError(
                    f"method must implement impute(matrix, context) or be callable, "
                    f"got {type(method)}"
                )
            method = FunctionMethod(key, method)

        with self._lock:
            if key in self._methods and not replace:
                raise ValueError(f"Method '{key}' is already registered")
            self._methods[key] = method
        return method

    def unregister(self, name: str) -> None:
        with self._lock:
            self._methods.pop(normalize_method_name(name), None)

    def get(self, name: str) -> ImputationMethod:
        """
        Look up a method.

        Raises:
            KeyError: If no method is registered under ``name``
        """
        key = normalize_method_name(name)
        try:
            return self._methods[key]
        except KeyError:
            raise KeyError(
                f"Unknown imputation method '{name}'. Registered: {self.names()}"
            ) from None

    def names(self) -> list[str]:
        return list(self._methods)

    def copy(self) -> MethodRegistry:
        clone = MethodRegistry()
        clone._methods = dict(self._methods)
        return clone

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_method_name(name) in self._methods

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._methods)

    def __repr__(self) -> str:
        return f"MethodRegistry({self.names()})"


def default_registry() -> MethodRegistry:
    """Fresh registry holding the built-in Baseline and Network methods."""
    from dropimpute.imputation.baseline import BaselineImputer
    from dropimpute.imputation.network import NetworkImputer

    registry = MethodRegistry()
    registry.register(BASELINE, BaselineImputer())
    registry.register(NETWORK, NetworkImputer())
    return registry


_shared: MethodRegistry | None = None
_shared_lock = threading.Lock()


def shared_registry() -> MethodRegistry:
    """Process-wide registry used when callers do not pass their own."""
    global _shared
    with _shared_lock:
        if _shared is None:
            _shared = default_registry()
        return _shared


def register_method(name: str, replace: bool = False):
    """
    Decorator registering a function or class instance in the shared registry.

    Examples:
        >>> @register_method("constant_one")
        ... def constant_one(matrix, context):
        ...     return np.where(matrix.data == 0, 1.0, matrix.data)
    """
    def decorator(method):
        shared_registry().register(name, method, replace=replace)
        return method
    return decorator
