"""Data models for analyzed images."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .exceptions import AnalyzerError, ErrorCode


@dataclass(frozen=True)
class Layer:
    """Container image layer metadata."""

    index: int
    digest: str
    diff_id: str  # Digest of the decompressed content
    media_type: str
    compressed_size: int
    uncompressed_size: int  # Measured by draining the decompressed stream

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "digest": self.digest,
            "diffId": self.diff_id,
            "mediaType": self.media_type,
            "compressedSize": self.compressed_size,
            "uncompressedSize": self.uncompressed_size,
        }


@dataclass(frozen=True)
class Image:
    """Resolved container image, immutable once built."""

    reference: str
    digest: str
    media_type: str
    size: int
    layers: tuple[Layer, ...] = ()
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_compressed_size(self) -> int:
        return sum(layer.compressed_size for layer in self.layers)

    @property
    def total_uncompressed_size(self) -> int:
        return sum(layer.uncompressed_size for layer in self.layers)

    def validate(self, metadata_only: bool = False) -> None:
        """Ensure the image is structurally consistent.

        Args:
            metadata_only: Whether the image was loaded without layers

        Raises:
            AnalyzerError: VALIDATION_FAILED describing the first violation
        """

        def fail(message: str) -> AnalyzerError:
            return AnalyzerError(
                ErrorCode.VALIDATION_FAILED, "validate", self.reference, message
            )

        if not self.reference:
            raise fail("image reference is empty")
        if not self.digest:
            raise fail("image digest is empty")
        if self.size <= 0:
            raise fail("image size is invalid")

        if not self.layers:
            if metadata_only:
                return
            raise fail("image has no layers")

        for position, layer in enumerate(self.layers):
            if layer.index != position:
                raise fail(f"layer index {layer.index} out of order")
            if not layer.digest:
                raise fail(f"layer {position} has empty digest")
            if not layer.diff_id:
                raise fail(f"layer {position} has empty diff id")
            if layer.compressed_size < 0:
                raise fail(f"layer {position} has invalid compressed size")
            if layer.uncompressed_size < 0:
                raise fail(f"layer {position} has invalid uncompressed size")

    def to_dict(self) -> dict[str, Any]:
        """Render the image as plain, deterministic data."""
        return {
            "reference": self.reference,
            "digest": self.digest,
            "mediaType": self.media_type,
            "size": self.size,
            "layers": [layer.to_dict() for layer in self.layers],
            "loadedAt": self.loaded_at.isoformat(),
        }


@dataclass(frozen=True)
class Metrics:
    """Execution metrics of one load call. Durations are in seconds."""

    fetch_duration: float = 0.0
    build_duration: float = 0.0
    total_duration: float = 0.0
    fetch_attempts: int = 0
    digest_pinned: bool = False
    success: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "fetchDuration": self.fetch_duration,
            "buildDuration": self.build_duration,
            "totalDuration": self.total_duration,
            "fetchAttempts": self.fetch_attempts,
            "digestPinned": self.digest_pinned,
            "success": self.success,
        }


@dataclass(frozen=True)
class FetchTelemetry:
    """Payload handed to the metrics hook after a fetch."""

    reference: str
    duration: float
    digest: str
    digest_pinned: bool
