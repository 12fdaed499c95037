"""
Error taxonomy for dropout imputation.

Four failure classes cover the whole engine:

    InvalidInputError:
        Malformed expression matrix, metadata or parameters. Fatal; raised
        before any work is done and no partial result is produced.

    MethodExecutionError:
        A single imputation method raised, returned an unusable matrix, or ran
        past its timeout. Non-fatal while at least one other method succeeds:
        the orchestrator logs it, records it in ``failed_methods`` and keeps
        going. Raised to the caller only when every requested method failed.

    MissingMethodResultError:
        An ensemble selection references a method for which no imputed matrix
        exists. Fatal for the ensemble step only.

    ShapeMismatchError:
        Matrices that must align (imputed values, probabilities, zero masks,
        ensemble members) differ in shape or identifiers. Fatal for the
        offending call.

Examples:
    >>> from dropimpute.exceptions import InvalidInputError
    >>> try:
    ...     validate_matrix(-np.ones((2, 2)), gene_ids=["a", "b"])
    ... except InvalidInputError as e:
    ...     print(e)
"""

from __future__ import annotations

__all__ = [
    "DropImputeError",
    "InvalidInputError",
    "ShapeMismatchError",
    "MissingMethodResultError",
    "MethodExecutionError",
]


class DropImputeError(Exception):
    """Base class for all errors raised by dropimpute."""
    pass


class InvalidInputError(DropImputeError, ValueError):
    """Raised when an input matrix, table or parameter violates its contract."""
    pass


class ShapeMismatchError(DropImputeError, ValueError):
    """Raised when collaborating matrices do not share shape or identifiers."""
    pass


class MissingMethodResultError(DropImputeError, KeyError):
    """Raised when an ensemble references a method with no computed result."""

    def __init__(self, missing: list[str] | str, available: list[str] | None = None):
        if isinstance(missing, str):
            missing = [missing]
        self.missing = list(missing)
        self.available = list(available or [])
        super().__init__(
            f"No imputation result for method(s) {self.missing}; "
            f"available: {self.available}"
        )

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])


class MethodExecutionError(DropImputeError, RuntimeError):
    """
    Raised (or recorded) when one imputation method fails.

    Attributes:
        method: Name of the failing method
        timed_out: True when the method was abandoned after its timeout
        cause: Original exception, if any
    """

    def __init__(
        self,
        method: str,
        message: str,
        timed_out: bool = False,
        cause: BaseException | None = None,
    ):
        self.method = method
        self.timed_out = timed_out
        self.cause = cause
        super().__init__(f"{method}: {message}")
