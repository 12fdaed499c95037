"""
Base transformation framework for immutable matrix operations.

Every matrix → matrix step that is configured once and applied to many
matrices (normalization, biological-zero rollback) subclasses Transform.
Transformations are pure: they return new ExpressionMatrix instances and never
modify their input.

Biological Context:
    A typical single-cell imputation workflow is a chain of steps:
    1. Library-size normalization (RPM, TPM)
    2. Optional log transform
    3. Dropout imputation (one or several methods, or a per-gene ensemble)
    4. Biological-zero rollback

    Each step must be reproducible (same input → same output) and auditable
    (parameters logged), so the parameters travel with the transform.

Examples:
    >>> from dropimpute.core.transform import Transform
    >>> from dropimpute.core.biomatrix import ExpressionMatrix
    >>>
    >>> class Log1p(Transform):
    ...     def __init__(self):
    ...         super().__init__(name="Log1p", params={})
    ...
    ...     def apply(self, matrix: ExpressionMatrix) -> ExpressionMatrix:
    ...         return matrix.with_data(np.log1p(matrix.data))
    >>>
    >>> logged = Log1p().apply(matrix)
    >>> # matrix is unchanged
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING
from datetime import datetime

if TYPE_CHECKING:
    from dropimpute.core.biomatrix import ExpressionMatrix

__all__ = ['Transform']


class Transform(ABC):
    """
    Abstract base class for matrix transformations.

    Attributes:
        name: Human-readable transformation name (e.g., "RPMNormalization")
        params: Parameters used for this transformation (JSON-serializable)
        timestamp: When this transform instance was created (audit trail)
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        """
        Initialize transformation with name and parameters.

        Args:
            name: Human-readable transformation name
            params: Dictionary of parameters, e.g. {"scale": 1.0, "log": True}
        """
        self.name = name
        self.params = params
        self.timestamp = datetime.now()

    @abstractmethod
    def apply(self, matrix: ExpressionMatrix) -> ExpressionMatrix:
        """
        Execute transformation and return a new matrix.

        Must never modify the input matrix.

        Raises:
            InvalidInputError: If the transformation cannot be applied
        """
        pass

    def validate(self, matrix: ExpressionMatrix) -> list[str]:
        """
        Check preconditions before applying the transformation.

        Subclasses should override and call super().validate() first.

        Returns:
            List of error messages (empty list = valid)
        """
        errors: list[str] = []

        if matrix.data.size == 0:
            errors.append("Cannot process empty matrix")

        return errors

    def __repr__(self) -> str:
        """String like "RPMNormalization(scale=1.0, log=False)"."""
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"
