"""Normalization of registry errors into AnalyzerError.

Registries are inconsistent about returning structured errors, so the
classification is layered: context errors first, then aiohttp transport
errors, then low-level network errors anywhere in the cause chain, and only
as a last resort a textual inspection of the error messages.
"""

import asyncio
import socket
import ssl
from typing import Iterator, Optional

import aiohttp

from ..exceptions import AnalyzerError, ErrorCode

NETWORK_ERRORS = (ConnectionError, socket.gaierror, ssl.SSLError, TimeoutError)
TRANSPORT_ERRORS = (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError)

# Ordered: first match wins
MESSAGE_RULES: tuple[tuple[tuple[str, ...], ErrorCode, str], ...] = (
    (("401", "unauthorized", "denied"), ErrorCode.UNAUTHORIZED, "unauthorized access"),
    (("403", "forbidden"), ErrorCode.UNAUTHORIZED, "forbidden"),
    (("404", "not found"), ErrorCode.IMAGE_NOT_FOUND, "image not found"),
    (("timeout",), ErrorCode.TIMEOUT, "request timeout"),
    (("429", "too many requests"), ErrorCode.FETCH_FAILED, "rate limited"),
    (("500", "502", "503", "504"), ErrorCode.FETCH_FAILED, "registry server error"),
)


def iter_causes(error: BaseException) -> Iterator[BaseException]:
    """Yield an error followed by its causes, guarding against cycles."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _is_timeout(error: BaseException) -> bool:
    return any(
        isinstance(e, (TimeoutError, aiohttp.ServerTimeoutError))
        for e in iter_causes(error)
    )


def classify_network_error(
    operation: str, reference: str, error: BaseException
) -> AnalyzerError:
    """Split transport-level failures into timeouts and fetch failures."""
    if _is_timeout(error):
        return AnalyzerError(
            ErrorCode.TIMEOUT, operation, reference, "network timeout", error
        )
    return AnalyzerError(
        ErrorCode.FETCH_FAILED, operation, reference, "network error", error
    )


def _message_of(error: BaseException) -> str:
    # Response errors render their URL, whose port may look like a status
    if isinstance(error, aiohttp.ClientResponseError):
        return f"{error.status} {error.message}"
    return str(error)


def classify_message(
    operation: str, reference: str, error: BaseException
) -> AnalyzerError:
    """Classify an error by the text of its messages."""
    text = " ".join(_message_of(e) for e in iter_causes(error)).lower()
    for needles, code, message in MESSAGE_RULES:
        if any(needle in text for needle in needles):
            return AnalyzerError(code, operation, reference, message, error)

    return AnalyzerError(
        ErrorCode.UNKNOWN, operation, reference, "unknown registry error", error
    )


def classify_registry_error(
    operation: str, reference: str, error: BaseException
) -> AnalyzerError:
    """Convert any registry-related error into an AnalyzerError.

    Already classified errors are returned unchanged.

    Args:
        operation: Logical operation name
        reference: Image reference involved
        error: Error to classify

    Returns:
        AnalyzerError carrying ``error`` as its cause
    """
    if isinstance(error, AnalyzerError):
        return error

    # Deadline or cancellation of the surrounding call
    if isinstance(error, asyncio.CancelledError):
        return AnalyzerError(
            ErrorCode.TIMEOUT, operation, reference, "operation canceled", error
        )
    if isinstance(error, TimeoutError) and not isinstance(error, TRANSPORT_ERRORS):
        return AnalyzerError(
            ErrorCode.TIMEOUT, operation, reference, "operation timeout", error
        )

    if isinstance(error, TRANSPORT_ERRORS):
        return classify_network_error(operation, reference, error)

    for cause in iter_causes(error):
        if isinstance(cause, TRANSPORT_ERRORS + NETWORK_ERRORS):
            return classify_network_error(operation, reference, cause)

    return classify_message(operation, reference, error)
