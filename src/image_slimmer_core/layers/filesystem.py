"""Safe materialization of layer archives on disk."""

import asyncio
import logging
import os
import shutil
import tarfile
import tempfile
import threading
from pathlib import Path
from typing import IO, AsyncIterable, Mapping, Optional, Union

import aiofiles

from ..exceptions import AnalyzerError, ErrorCode
from ..models import Image, Layer

logger = logging.getLogger(__name__)

LayerContent = Union[IO[bytes], AsyncIterable[bytes]]

_OPERATION = "filesystem"


def _fail(message: str, cause: Optional[BaseException] = None) -> AnalyzerError:
    return AnalyzerError(ErrorCode.LAYER_EXTRACT_FAILED, _OPERATION, "", message, cause)


def _is_within(path: str, root: str) -> bool:
    """Check that ``path`` lies strictly below ``root``."""
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path != root and path.startswith(prefix)


def resolve_entry_path(target_dir: str, entry_name: str) -> str:
    """Compute the destination of an archive entry.

    Args:
        target_dir: Normalized absolute extraction directory
        entry_name: Entry name as recorded in the archive

    Returns:
        Destination path strictly inside ``target_dir``

    Raises:
        AnalyzerError: LAYER_EXTRACT_FAILED for entries escaping the target
    """
    cleaned = os.path.normpath(entry_name.lstrip("/"))
    destination = os.path.normpath(os.path.join(target_dir, cleaned))
    if not _is_within(destination, target_dir):
        raise _fail(f"illegal file path in layer: {entry_name}")

    # Symlinks materialized earlier must not redirect writes elsewhere
    parent = os.path.realpath(os.path.dirname(destination))
    real_root = os.path.realpath(target_dir)
    if parent != real_root and not _is_within(parent, real_root):
        raise _fail(f"illegal file path in layer (symlink escape): {entry_name}")

    return destination


def _remove_existing(path: str) -> None:
    if os.path.islink(path) or (os.path.lexists(path) and not os.path.isdir(path)):
        os.unlink(path)


def _write_member(tar: tarfile.TarFile, member: tarfile.TarInfo, path: str) -> None:
    if member.isdir():
        try:
            os.makedirs(path, mode=member.mode & 0o7777, exist_ok=True)
        except OSError as e:
            raise _fail(f"failed to create directory: {path}", e) from e

    elif member.isreg():
        try:
            os.makedirs(os.path.dirname(path), mode=0o755, exist_ok=True)
            _remove_existing(path)
            source = tar.extractfile(member)
            fd = os.open(
                path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, member.mode & 0o7777
            )
            with os.fdopen(fd, "wb") as target:
                if source is not None:
                    shutil.copyfileobj(source, target)
        except (OSError, tarfile.TarError) as e:
            raise _fail(f"failed to write file: {path}", e) from e

    elif member.issym():
        try:
            os.makedirs(os.path.dirname(path), mode=0o755, exist_ok=True)
            _remove_existing(path)
            os.symlink(member.linkname, path)
        except OSError as e:
            raise _fail(f"failed to create symlink: {path}", e) from e

    else:
        # Hard links, devices and fifos are not materialized
        logger.debug(f"Skipping unsupported entry {member.name} (type {member.type!r})")


def extract_layer_archive(
    fileobj: IO[bytes],
    target_dir: Union[str, Path],
    stop: Optional[threading.Event] = None,
) -> int:
    """Stream a decompressed layer archive into ``target_dir``.

    Args:
        fileobj: Readable binary stream of the layer tar archive
        target_dir: Extraction directory, created if missing
        stop: Checked before each entry; once set, no further entry is written

    Returns:
        Number of entries processed

    Raises:
        AnalyzerError: LAYER_EXTRACT_FAILED on unsafe entries or I/O errors
    """
    root = os.path.normpath(os.path.abspath(os.fspath(target_dir)))
    try:
        os.makedirs(root, exist_ok=True)
    except OSError as e:
        raise _fail(f"failed to create target directory: {root}", e) from e

    count = 0
    try:
        with tarfile.open(fileobj=fileobj, mode="r|*") as tar:
            for member in tar:
                if stop is not None and stop.is_set():
                    logger.debug(f"Extraction into {root} stopped after {count} entries")
                    break
                path = resolve_entry_path(root, member.name)
                _write_member(tar, member, path)
                count += 1
    except tarfile.TarError as e:
        raise _fail("failed to read tar entry", e) from e
    except OSError as e:
        raise _fail("failed to read layer stream", e) from e

    return count


async def _spool(content: AsyncIterable[bytes], directory: Optional[str] = None) -> str:
    """Write an async byte stream to a temporary file and return its path."""
    try:
        fd, path = tempfile.mkstemp(prefix="layer-", suffix=".tar", dir=directory)
        os.close(fd)
        try:
            async with aiofiles.open(path, "wb") as spool:
                async for chunk in content:
                    await spool.write(chunk)
        except BaseException:
            os.unlink(path)
            raise
    finally:
        # Releases the underlying response when the stream was not drained
        aclose = getattr(content, "aclose", None)
        if aclose is not None:
            await aclose()
    return path


async def _extract_in_executor(
    fileobj: IO[bytes], target_dir: Union[str, Path]
) -> int:
    """Run the tar walk in the default executor.

    On cancellation the worker is told to stop and awaited, so no entry is
    written after the caller has been cancelled.
    """
    loop = asyncio.get_running_loop()
    stop = threading.Event()
    future = loop.run_in_executor(None, extract_layer_archive, fileobj, target_dir, stop)
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        stop.set()
        await asyncio.wait([future])
        raise


async def materialize_layer(
    layer: Layer, content: LayerContent, target_dir: Union[str, Path]
) -> None:
    """Write one layer's decompressed archive into ``target_dir``.

    Args:
        layer: Layer being materialized, for logging
        content: Binary file object or async iterator of archive bytes
        target_dir: Extraction directory

    Raises:
        AnalyzerError: LAYER_EXTRACT_FAILED on unsafe entries or I/O errors
    """
    logger.debug(f"Materializing layer {layer.index} ({layer.digest}) into {target_dir}")

    if hasattr(content, "read"):
        count = await _extract_in_executor(content, target_dir)
    else:
        try:
            spooled = await _spool(content)
        except OSError as e:
            raise _fail(f"failed to buffer layer {layer.index}", e) from e
        except AnalyzerError:
            raise
        except Exception as e:
            raise _fail(f"failed to read layer {layer.index}", e) from e
        try:
            with open(spooled, "rb") as fileobj:
                count = await _extract_in_executor(fileobj, target_dir)
        finally:
            os.unlink(spooled)

    logger.debug(f"Layer {layer.index}: {count} entries written")


async def materialize_layers(
    image: Image,
    streams: Mapping[int, LayerContent],
    target_dir: Union[str, Path],
) -> None:
    """Materialize every layer of an image in ascending index order.

    Args:
        image: Image whose layers are written
        streams: Layer content keyed by layer index
        target_dir: Extraction directory

    Raises:
        AnalyzerError: LAYER_EXTRACT_FAILED if a stream is missing or a layer
            cannot be written
    """
    if image is None:
        raise AnalyzerError(ErrorCode.BUILD_FAILED, _OPERATION, "", "image is missing")

    for layer in sorted(image.layers, key=lambda item: item.index):
        content = streams.get(layer.index)
        if content is None:
            raise AnalyzerError(
                ErrorCode.LAYER_EXTRACT_FAILED,
                _OPERATION,
                image.reference,
                f"no reader provided for layer {layer.index}",
            )
        await materialize_layer(layer, content, target_dir)
