"""Layer metadata extraction."""

import logging
from typing import Sequence

from ..core.types import LayerHandle, require_size, require_text
from ..exceptions import AnalyzerError, ErrorCode
from ..models import Layer

logger = logging.getLogger(__name__)


async def measure_uncompressed_size(layer: LayerHandle) -> int:
    """Count the bytes of a layer's decompressed stream.

    The stream is fully drained rather than sampled, so the figure is exact
    at the cost of one decompression pass.
    """
    total = 0
    stream = layer.uncompressed()
    try:
        async for chunk in stream:
            total += len(chunk)
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()
    return total


async def extract_layers(
    raw_layers: Sequence[LayerHandle], reference: str
) -> list[Layer]:
    """Convert raw layer handles into structured Layer metadata.

    Layers are processed one at a time in registry order; the first layer
    that cannot be fully described aborts the extraction.

    Args:
        raw_layers: Layer handles in registry order
        reference: Image reference, for error reporting

    Returns:
        List of Layer objects indexed from 0

    Raises:
        AnalyzerError: NO_LAYERS if there is nothing to extract,
            LAYER_EXTRACT_FAILED on the first failing layer
    """
    if not raw_layers:
        raise AnalyzerError(
            ErrorCode.NO_LAYERS, "extract", reference, "no layers to extract"
        )

    layers = []
    for index, raw in enumerate(raw_layers):
        step = "digest"
        try:
            digest = require_text(await raw.digest(), "layer digest")
            step = "diff id"
            diff_id = require_text(await raw.diff_id(), "layer diff id")
            step = "media type"
            media_type = require_text(
                await raw.media_type(), "layer media type", allow_empty=True
            )
            step = "compressed size"
            compressed_size = require_size(await raw.size(), "layer size")
            step = "uncompressed size"
            uncompressed_size = await measure_uncompressed_size(raw)
        except Exception as e:
            raise AnalyzerError(
                ErrorCode.LAYER_EXTRACT_FAILED,
                "extract",
                reference,
                f"failed to get layer {step} (index {index})",
                e,
            ) from e

        layer = Layer(
            index=index,
            digest=digest,
            diff_id=diff_id,
            media_type=media_type,
            compressed_size=compressed_size,
            uncompressed_size=uncompressed_size,
        )
        logger.debug(
            f"Layer {index} {layer.digest}: {layer.compressed_size} bytes "
            f"compressed, {layer.uncompressed_size} bytes uncompressed"
        )
        layers.append(layer)

    return layers
