"""Structured errors for the image analyzer."""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Machine-readable classification of an analyzer error."""

    # Reference parsing errors
    INVALID_REFERENCE = "INVALID_REFERENCE"

    # Registry and fetch errors
    IMAGE_NOT_FOUND = "IMAGE_NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    TIMEOUT = "TIMEOUT"
    FETCH_FAILED = "FETCH_FAILED"

    # Image structure errors
    NO_LAYERS = "NO_LAYERS"
    BUILD_FAILED = "BUILD_FAILED"
    DIGEST_FAILED = "DIGEST_FAILED"
    MEDIA_TYPE_FAILED = "MEDIA_TYPE_FAILED"
    SIZE_FAILED = "SIZE_FAILED"
    LAYER_EXTRACT_FAILED = "LAYER_EXTRACT_FAILED"

    VALIDATION_FAILED = "VALIDATION_FAILED"

    # Fallback classification
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:
        return self.value


# Codes worth another attempt
TEMPORARY_CODES = frozenset({ErrorCode.TIMEOUT, ErrorCode.FETCH_FAILED})


class AnalyzerError(Exception):
    """Base exception for every failure crossing the analyzer boundary.

    Two errors compare equal when they carry the same code, so callers can
    branch on the kind of failure without looking at message text. The
    underlying cause is kept both as ``cause`` and as ``__cause__``.
    """

    def __init__(
        self,
        code: ErrorCode,
        operation: str,
        reference: str,
        message: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        """Initialize the error.

        Args:
            code: Error classification
            operation: Logical operation name (e.g. "fetch", "build")
            reference: Image reference involved in the error
            message: Human readable description
            cause: Underlying error, if any
        """
        super().__init__(message)
        self._code = ErrorCode(code)
        self._operation = operation
        self._reference = reference
        self._message = message
        self._cause = cause
        self._metrics: Any = None
        self.__cause__ = cause

    @classmethod
    def wrap(
        cls, code: ErrorCode, operation: str, reference: str, cause: BaseException
    ) -> "AnalyzerError":
        """Create an error using the code itself as message."""
        return cls(code, operation, reference, str(code), cause)

    @property
    def code(self) -> ErrorCode:
        return self._code

    @property
    def operation(self) -> str:
        return self._operation

    @property
    def reference(self) -> str:
        return self._reference

    @property
    def message(self) -> str:
        return self._message

    @property
    def cause(self) -> Optional[BaseException]:
        return self._cause

    @property
    def metrics(self) -> Any:
        """Metrics snapshot of the failed load call, if attached."""
        return self._metrics

    @property
    def temporary(self) -> bool:
        """Whether the error is potentially retryable."""
        return self._code in TEMPORARY_CODES

    @property
    def timeout(self) -> bool:
        return self._code is ErrorCode.TIMEOUT

    def attach_metrics(self, metrics: Any) -> None:
        """Attach the metrics snapshot once; later calls are ignored."""
        if self._metrics is None:
            self._metrics = metrics

    def __str__(self) -> str:
        text = (
            f"[{self._code}] {self._message} "
            f"(op={self._operation} ref={self._reference})"
        )
        if self._cause is not None:
            return f"{text}: {self._cause}"
        return text

    def __repr__(self) -> str:
        return (
            f"AnalyzerError(code={self._code.value!r}, "
            f"operation={self._operation!r}, reference={self._reference!r}, "
            f"message={self._message!r})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AnalyzerError):
            return NotImplemented
        return self._code is other._code

    def __hash__(self) -> int:
        return hash(self._code)


def as_analyzer_error(error: Optional[BaseException]) -> Optional[AnalyzerError]:
    """Find the first AnalyzerError in an error's cause chain."""
    seen = set()
    current = error
    while current is not None and id(current) not in seen:
        if isinstance(current, AnalyzerError):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


def is_code(error: Optional[BaseException], code: ErrorCode) -> bool:
    """Check whether an error (or one of its causes) has the given code."""
    found = as_analyzer_error(error)
    return found is not None and found.code is ErrorCode(code)
