"""Image Slimmer Core - async container image acquisition and layer analysis."""

__version__ = "0.1.0"

from .analyzer import load
from .core.auth import AnonymousKeychain, Credentials, DockerConfigKeychain
from .core.config import LoadConfig, build_config
from .core.registry_client import HttpRegistryClient
from .core.types import FetchOptions, ImageHandle, LayerHandle, RegistryClient
from .exceptions import AnalyzerError, ErrorCode, as_analyzer_error, is_code
from .layers.filesystem import materialize_layer, materialize_layers
from .models import FetchTelemetry, Image, Layer, Metrics
from .utils.reference import ParsedReference, parse_reference

__all__ = [
    "load",
    "LoadConfig",
    "build_config",
    "Image",
    "Layer",
    "Metrics",
    "FetchTelemetry",
    "AnalyzerError",
    "ErrorCode",
    "is_code",
    "as_analyzer_error",
    "ParsedReference",
    "parse_reference",
    "RegistryClient",
    "ImageHandle",
    "LayerHandle",
    "FetchOptions",
    "HttpRegistryClient",
    "Credentials",
    "AnonymousKeychain",
    "DockerConfigKeychain",
    "materialize_layer",
    "materialize_layers",
]
