"""Image acquisition: fetch through the retry executor, then build."""

import asyncio
import functools
import inspect
import logging
from datetime import datetime, timezone
from typing import Optional

from ..exceptions import AnalyzerError, ErrorCode
from ..layers.extractor import extract_layers
from ..layers.filesystem import materialize_layer
from ..models import FetchTelemetry, Image
from ..utils.reference import ParsedReference
from .config import LoadConfig
from .error_mapper import classify_registry_error
from .metrics import MetricsCollector
from .retry import RetryExecutor
from .types import (
    FetchOptions,
    ImageHandle,
    RegistryClient,
    require_size,
    require_text,
)

logger = logging.getLogger(__name__)


class ImageAcquirer:
    """Runs the fetch and build phases of a single load call.

    An acquirer owns its reference, handle and metrics collector exclusively
    and is discarded after the call.
    """

    def __init__(
        self,
        client: RegistryClient,
        config: LoadConfig,
        collector: MetricsCollector,
        reference: str,
        deadline: Optional[float] = None,
    ) -> None:
        self.client = client
        self.config = config
        self.collector = collector
        self.reference = reference
        self.deadline = deadline

    async def fetch(
        self, parsed: ParsedReference, digest_pinned: bool
    ) -> Optional[ImageHandle]:
        """Fetch the raw image, retrying transient failures.

        Raises:
            AnalyzerError: Classified fetch error, or FETCH_FAILED when a
                digest-pinned reference resolves to another digest
        """
        executor = RetryExecutor(
            self.config.retries,
            self.config.backoff,
            classify=functools.partial(classify_registry_error, "fetch", self.reference),
        )
        options = FetchOptions(keychain=self.config.keychain, transport=self.config.transport)

        self.collector.start_fetch()
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            handle = await executor.run(
                lambda: self.client.fetch_image(parsed, options),
                deadline=self.deadline,
            )
        finally:
            self.collector.end_fetch(executor.attempts, digest_pinned)
        duration = loop.time() - started

        if handle is None:
            # Reported as BUILD_FAILED by build()
            return None

        digest = await self._resolve(handle.digest, ErrorCode.DIGEST_FAILED, "digest")
        if digest_pinned and digest != parsed.digest:
            # Correctness violation, never retried
            raise AnalyzerError(
                ErrorCode.FETCH_FAILED,
                "fetch",
                self.reference,
                f"resolved digest {digest} does not match pinned digest {parsed.digest}",
            )

        logger.debug(
            f"Fetched {self.reference} ({digest}) in {executor.attempts} attempt(s)"
        )
        await self._notify(FetchTelemetry(self.reference, duration, digest, digest_pinned))
        return handle

    async def _notify(self, telemetry: FetchTelemetry) -> None:
        hook = self.config.metrics_hook
        if hook is None:
            return
        try:
            result = hook(telemetry)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Metrics hook failed for {telemetry.reference}: {e}")

    async def _resolve(
        self, getter, code: ErrorCode, what: str, convert=require_text
    ):
        try:
            return convert(await getter(), f"image {what}")
        except Exception as e:
            raise AnalyzerError(
                code, "build", self.reference, f"failed to resolve image {what}", e
            ) from e

    async def build(self, handle: Optional[ImageHandle]) -> Image:
        """Turn a raw image handle into an immutable Image.

        Raises:
            AnalyzerError: DIGEST_FAILED, MEDIA_TYPE_FAILED, SIZE_FAILED,
                BUILD_FAILED, NO_LAYERS or LAYER_EXTRACT_FAILED
        """
        if handle is None:
            raise AnalyzerError(
                ErrorCode.BUILD_FAILED, "build", self.reference, "cannot build from empty image"
            )

        self.collector.start_build()
        try:
            digest = await self._resolve(handle.digest, ErrorCode.DIGEST_FAILED, "digest")
            media_type = await self._resolve(
                handle.media_type,
                ErrorCode.MEDIA_TYPE_FAILED,
                "media type",
                convert=functools.partial(require_text, allow_empty=True),
            )
            size = await self._resolve(
                handle.size, ErrorCode.SIZE_FAILED, "size", convert=require_size
            )

            layers = ()
            if not self.config.metadata_only:
                layers = tuple(await self._build_layers(handle))

            image = Image(
                reference=self.reference,
                digest=digest,
                media_type=media_type,
                size=size,
                layers=layers,
                loaded_at=datetime.now(timezone.utc),
            )
            image.validate(metadata_only=self.config.metadata_only)
        finally:
            self.collector.end_build()

        return image

    async def _build_layers(self, handle: ImageHandle):
        try:
            raw_layers = list(await handle.layers())
        except Exception as e:
            raise AnalyzerError(
                ErrorCode.BUILD_FAILED,
                "build",
                self.reference,
                "failed to retrieve image layers",
                e,
            ) from e

        if not raw_layers:
            raise AnalyzerError(
                ErrorCode.NO_LAYERS, "build", self.reference, "image contains no layers"
            )

        layers = await extract_layers(raw_layers, self.reference)

        target_dir = self.config.target_dir
        if target_dir is not None:
            for layer, raw in zip(layers, raw_layers):
                await materialize_layer(layer, raw.uncompressed(), target_dir)

        return layers
