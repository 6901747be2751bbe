"""Example usage of the async image loader."""

import asyncio
import logging
import sys
import tempfile

# Add parent directory to path
sys.path.insert(0, "src")

from image_slimmer_core import AnalyzerError, ErrorCode, load

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main():
    """Load one image and print its layers."""
    reference = "docker.io/library/alpine:3.20"

    try:
        logger.info(f"Loading {reference}...")
        image, metrics = await load(reference, retries=2, timeout=60)
        logger.info(
            f"✓ {image.digest}: {len(image.layers)} layers, "
            f"{image.total_uncompressed_size} bytes uncompressed"
        )
        for layer in image.layers:
            logger.info(
                f"  [{layer.index}] {layer.digest[:19]} "
                f"{layer.compressed_size} -> {layer.uncompressed_size} bytes"
            )
        logger.info(
            f"Fetch {metrics.fetch_duration:.2f}s in {metrics.fetch_attempts} attempt(s), "
            f"build {metrics.build_duration:.2f}s"
        )

    except AnalyzerError as e:
        if e.code is ErrorCode.IMAGE_NOT_FOUND:
            logger.error(f"Image not found: {reference}")
        else:
            logger.error(f"Load failed: {e}")
            if e.metrics is not None:
                logger.error(f"  after {e.metrics.fetch_attempts} attempt(s)")


async def metadata_and_materialize():
    """Metadata-only loads and writing a root filesystem to disk."""
    reference = "docker.io/library/busybox:1.36"

    def report(telemetry):
        logger.info(f"Fetched {telemetry.reference} in {telemetry.duration:.2f}s")

    try:
        image, _ = await load(reference, metadata_only=True, metrics_hook=report)
        logger.info(f"{reference} is {image.media_type} ({image.size} bytes manifest)")

        with tempfile.TemporaryDirectory() as rootfs:
            image, _ = await load(reference, target_dir=rootfs)
            logger.info(f"Materialized {len(image.layers)} layers into {rootfs}")

    except AnalyzerError as e:
        logger.error(f"Load failed: {e}")


if __name__ == "__main__":
    print("=== Basic Load ===")
    asyncio.run(main())

    print("\n=== Metadata Only and Materialization ===")
    asyncio.run(metadata_and_materialize())
