"""Load configuration."""

import dataclasses
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

import aiohttp

from ..exceptions import AnalyzerError, ErrorCode
from ..models import FetchTelemetry
from .auth import DockerConfigKeychain, Keychain

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 2
DEFAULT_BACKOFF = 0.5

MetricsHook = Callable[[FetchTelemetry], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class LoadConfig:
    """Settings of a single load call."""

    timeout: float = DEFAULT_TIMEOUT
    retries: int = DEFAULT_RETRIES
    backoff: float = DEFAULT_BACKOFF
    keychain: Keychain = field(default_factory=DockerConfigKeychain)
    transport: Optional[aiohttp.BaseConnector] = None
    metrics_hook: Optional[MetricsHook] = None
    metadata_only: bool = False
    target_dir: Optional[Path] = None


def _invalid(message: str) -> AnalyzerError:
    return AnalyzerError(ErrorCode.VALIDATION_FAILED, "config", "", message)


def _is_positive_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def build_config(base: Optional[LoadConfig] = None, **overrides: Any) -> LoadConfig:
    """Apply defaults, then overrides, then validate.

    Args:
        base: Starting configuration (defaults when omitted)
        **overrides: Field values replacing those of ``base``

    Returns:
        Validated LoadConfig

    Raises:
        AnalyzerError: VALIDATION_FAILED for unknown fields or bad values
    """
    config = base if base is not None else LoadConfig()

    known = {f.name for f in dataclasses.fields(LoadConfig)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise _invalid(f"unknown load options: {', '.join(unknown)}")

    if overrides.get("target_dir") is not None:
        try:
            overrides["target_dir"] = Path(overrides["target_dir"])
        except TypeError as e:
            value = overrides["target_dir"]
            raise _invalid(f"target_dir must be a path, got {value!r}") from e
    if overrides:
        config = dataclasses.replace(config, **overrides)

    if not _is_positive_number(config.timeout):
        raise _invalid(
            f"timeout must be a positive finite number, got {config.timeout!r}"
        )
    if isinstance(config.retries, bool) or not isinstance(config.retries, int):
        raise _invalid(f"retries must be an integer, got {config.retries!r}")
    if config.retries < 0:
        raise _invalid(f"retries must be >= 0, got {config.retries}")
    if not _is_positive_number(config.backoff):
        raise _invalid(
            f"backoff must be a positive finite number, got {config.backoff!r}"
        )
    if config.keychain is None:
        raise _invalid("keychain cannot be None")
    if not isinstance(config.metadata_only, bool):
        raise _invalid(f"metadata_only must be a bool, got {config.metadata_only!r}")
    if config.metrics_hook is not None and not callable(config.metrics_hook):
        raise _invalid(f"metrics_hook must be callable, got {config.metrics_hook!r}")

    return config
