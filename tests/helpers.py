"""Test helpers: in-memory layer archives and fake registry handles."""

import gzip
import hashlib
import io
import tarfile
from typing import Callable, Optional

from image_slimmer_core.utils.reference import ParsedReference, parse_reference


def sha256_digest(data: bytes) -> str:
    """Return "sha256:<hex>" for data."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def build_layer_tar(entries) -> bytes:
    """Create an uncompressed tar archive.

    Args:
        entries: Iterable of (name, kind, payload, mode) where kind is
            "dir", "file" or "symlink" and payload is the file bytes or the
            link target
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, kind, payload, mode in entries:
            info = tarfile.TarInfo(name)
            info.mode = mode
            if kind == "dir":
                info.type = tarfile.DIRTYPE
                tar.addfile(info)
            elif kind == "file":
                info.size = len(payload)
                tar.addfile(info, fileobj=io.BytesIO(payload))
            elif kind == "symlink":
                info.type = tarfile.SYMTYPE
                info.linkname = payload
                tar.addfile(info)
            elif kind == "fifo":
                info.type = tarfile.FIFOTYPE
                tar.addfile(info)
            else:
                raise ValueError(f"unknown entry kind {kind}")
    return buffer.getvalue()


SAMPLE_ENTRIES = [
    ("etc", "dir", None, 0o755),
    ("etc/hosts", "file", b"127.0.0.1 localhost\n", 0o644),
    ("hosts-link", "symlink", "etc/hosts", 0o777),
]


async def iter_bytes(data: bytes, chunk_size: int = 7):
    """Async iterator over data in small chunks."""
    for start in range(0, len(data), chunk_size):
        yield data[start : start + chunk_size]


class FakeLayer:
    """Layer handle backed by an in-memory tar archive."""

    def __init__(
        self,
        archive: bytes,
        media_type: str = "application/vnd.oci.image.layer.v1.tar+gzip",
        fail_on: Optional[str] = None,
    ) -> None:
        self.archive = archive
        self.compressed_blob = gzip.compress(archive)
        self._media_type = media_type
        self.fail_on = fail_on
        self.stream_opened = 0

    def _check(self, field: str) -> None:
        if self.fail_on == field:
            raise RuntimeError(f"cannot resolve {field}")

    async def digest(self) -> str:
        self._check("digest")
        return sha256_digest(self.compressed_blob)

    async def diff_id(self) -> str:
        self._check("diff_id")
        return sha256_digest(self.archive)

    async def media_type(self) -> str:
        self._check("media_type")
        return self._media_type

    async def size(self) -> int:
        self._check("size")
        return len(self.compressed_blob)

    async def uncompressed(self):
        self.stream_opened += 1
        self._check("uncompressed")
        async for chunk in iter_bytes(self.archive, chunk_size=512):
            yield chunk


class FakeImage:
    """Image handle with configurable metadata and failures."""

    def __init__(
        self,
        layers=None,
        digest: str = "sha256:" + "a" * 64,
        media_type: str = "application/vnd.oci.image.manifest.v1+json",
        size: int = 1024,
        fail_on: Optional[str] = None,
    ) -> None:
        self._layers = list(layers or [])
        self._digest = digest
        self._media_type = media_type
        self._size = size
        self.fail_on = fail_on
        self.layers_called = 0

    def _check(self, field: str) -> None:
        if self.fail_on == field:
            raise RuntimeError(f"cannot resolve {field}")

    async def digest(self) -> str:
        self._check("digest")
        return self._digest

    async def media_type(self) -> str:
        self._check("media_type")
        return self._media_type

    async def size(self) -> int:
        self._check("size")
        return self._size

    async def layers(self):
        self.layers_called += 1
        self._check("layers")
        return list(self._layers)


class FakeRegistryClient:
    """Registry client returning a prepared image or raising prepared errors.

    ``behaviour`` is called with the attempt number (starting at 1) and
    either returns an image handle or raises.
    """

    def __init__(self, image: Optional[FakeImage] = None, behaviour: Optional[Callable] = None):
        self.image = image
        self.behaviour = behaviour
        self.fetch_calls = 0
        self.parse_calls = 0
        self.last_options = None

    def parse_reference(self, reference: str, strict: bool = True) -> ParsedReference:
        self.parse_calls += 1
        return parse_reference(reference, strict=strict)

    async def fetch_image(self, reference, options):
        self.fetch_calls += 1
        self.last_options = options
        if self.behaviour is not None:
            return self.behaviour(self.fetch_calls)
        return self.image


def sample_image(layer_count: int = 2, **kwargs) -> FakeImage:
    """Fake image with ``layer_count`` distinct layers."""
    layers = [
        FakeLayer(build_layer_tar([(f"layer{i}.txt", "file", f"layer {i}".encode() * (i + 1), 0o644)]))
        for i in range(layer_count)
    ]
    return FakeImage(layers=layers, **kwargs)
