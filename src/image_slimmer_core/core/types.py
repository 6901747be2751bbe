"""Core types shared by the analyzer and registry clients."""

from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, Sequence, runtime_checkable

import aiohttp

from ..utils.reference import ParsedReference
from .auth import Keychain


@runtime_checkable
class LayerHandle(Protocol):
    """Raw layer as exposed by a registry client."""

    async def digest(self) -> str: ...

    async def diff_id(self) -> str: ...

    async def media_type(self) -> str: ...

    async def size(self) -> int: ...

    def uncompressed(self) -> AsyncIterator[bytes]:
        """Stream the decompressed layer archive."""
        ...


@runtime_checkable
class ImageHandle(Protocol):
    """Raw image as returned by a registry client fetch."""

    async def digest(self) -> str: ...

    async def media_type(self) -> str: ...

    async def size(self) -> int: ...

    async def layers(self) -> Sequence[LayerHandle]: ...


@dataclass(frozen=True)
class FetchOptions:
    """Per-fetch authentication and transport settings."""

    keychain: Optional[Keychain] = None
    transport: Optional[aiohttp.BaseConnector] = None


@runtime_checkable
class RegistryClient(Protocol):
    """Capabilities the analyzer needs from a registry client."""

    def parse_reference(self, reference: str, strict: bool = True) -> ParsedReference:
        ...

    async def fetch_image(
        self, reference: ParsedReference, options: FetchOptions
    ) -> ImageHandle: ...


def require_text(value: object, what: str, allow_empty: bool = False) -> str:
    """Check a string value returned by a handle.

    Raises:
        TypeError: If the value is not a string
        ValueError: If the value is empty and ``allow_empty`` is False
    """
    if not isinstance(value, str):
        raise TypeError(f"{what} must be a string, got {value!r}")
    if not value and not allow_empty:
        raise ValueError(f"{what} is empty")
    return value


def require_size(value: object, what: str) -> int:
    """Check an integer size returned by a handle.

    Raises:
        TypeError: If the value is not an integer
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{what} must be an integer, got {value!r}")
    return value
