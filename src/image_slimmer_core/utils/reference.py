"""Image reference parsing and validation."""

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..exceptions import AnalyzerError, ErrorCode
from .digest import validate_digest

if TYPE_CHECKING:
    from ..core.types import RegistryClient

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"
MAX_NAME_LENGTH = 255

_DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}

_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
DOMAIN_PATTERN = re.compile(
    rf"^(?:{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*|\[[a-fA-F0-9:]+\])"
    r"(?::[0-9]+)?$"
)
PATH_COMPONENT_PATTERN = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$", re.ASCII)


@dataclass(frozen=True)
class ParsedReference:
    """Fully qualified image reference."""

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def name(self) -> str:
        """Registry and repository, without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def digest_pinned(self) -> bool:
        return self.digest is not None

    @property
    def identifier(self) -> str:
        """Manifest reference used against the registry (digest wins)."""
        return self.digest or self.tag or DEFAULT_TAG

    def __str__(self) -> str:
        text = self.name
        if self.tag:
            text = f"{text}:{self.tag}"
        if self.digest:
            text = f"{text}@{self.digest}"
        return text


def _is_domain(component: str) -> bool:
    return (
        "." in component
        or ":" in component
        or component == "localhost"
        or component.lower() != component
    )


def split_domain(name: str) -> tuple[str, str]:
    """Split a repository name into registry and path.

    Docker Hub is assumed when the first component does not look like a
    host, and official images get the ``library/`` prefix.
    """
    first, sep, remainder = name.partition("/")
    if sep and _is_domain(first):
        registry, path = first, remainder
    else:
        registry, path = DEFAULT_REGISTRY, name

    if registry in _DOCKER_HUB_ALIASES:
        registry = DEFAULT_REGISTRY
        if "/" not in path:
            path = f"library/{path}"

    return registry, path


def parse_reference(reference: str, strict: bool = True) -> ParsedReference:
    """Parse an image reference string.

    Args:
        reference: Reference such as "ghcr.io/org/app:1.0" or
            "alpine@sha256:<hex>"
        strict: Require an explicit tag or digest instead of defaulting to
            "latest"

    Returns:
        ParsedReference with registry defaults applied

    Raises:
        ValueError: If the reference is malformed
    """
    if not isinstance(reference, str) or not reference:
        raise ValueError("reference cannot be empty")

    remainder = reference
    digest = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if not validate_digest(digest):
            raise ValueError(f"invalid digest format: {digest!r}")

    tag = None
    colon = remainder.rfind(":")
    if colon > remainder.rfind("/"):
        remainder, tag = remainder[:colon], remainder[colon + 1 :]
        if not TAG_PATTERN.match(tag):
            raise ValueError(f"invalid tag format: {tag!r}")

    if not remainder:
        raise ValueError(f"missing repository name in {reference!r}")
    if len(remainder) > MAX_NAME_LENGTH:
        raise ValueError(f"repository name exceeds {MAX_NAME_LENGTH} characters")

    registry, path = split_domain(remainder)
    if not DOMAIN_PATTERN.match(registry):
        raise ValueError(f"invalid registry host: {registry!r}")
    for component in path.split("/"):
        if not PATH_COMPONENT_PATTERN.match(component):
            raise ValueError(f"invalid repository component: {component!r}")

    if tag is None and digest is None:
        if strict:
            raise ValueError(
                f"reference {reference!r} must specify a tag or digest explicitly"
            )
        tag = DEFAULT_TAG

    return ParsedReference(registry=registry, repository=path, tag=tag, digest=digest)


def validate_reference(
    reference: str, client: Optional["RegistryClient"] = None
) -> tuple[ParsedReference, bool]:
    """Strictly validate a reference before any network access.

    Args:
        reference: Image reference string
        client: Registry client whose parser is used; the built-in strict
            parser is used when omitted

    Returns:
        Tuple of (parsed reference, is digest pinned)

    Raises:
        AnalyzerError: INVALID_REFERENCE if the reference is empty or malformed
    """
    if not reference:
        raise AnalyzerError(
            ErrorCode.INVALID_REFERENCE,
            "validate",
            reference or "",
            "image reference cannot be empty",
        )

    try:
        if client is None:
            parsed = parse_reference(reference, strict=True)
        else:
            parsed = client.parse_reference(reference, strict=True)
    except Exception as e:
        raise AnalyzerError(
            ErrorCode.INVALID_REFERENCE,
            "validate",
            reference,
            f"invalid image reference {reference!r}",
            e,
        ) from e

    return parsed, parsed.digest is not None
