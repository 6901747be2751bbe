"""Async image loading entry point."""

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Optional

from .core.acquire import ImageAcquirer
from .core.config import LoadConfig, build_config
from .core.error_mapper import classify_registry_error
from .core.metrics import MetricsCollector
from .core.registry_client import HttpRegistryClient
from .core.types import RegistryClient
from .exceptions import AnalyzerError
from .models import Image, Metrics
from .utils.reference import validate_reference

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def _registry_client(
    client: Optional[RegistryClient], config: LoadConfig
) -> AsyncIterator[RegistryClient]:
    # Injected clients belong to the caller; the default one lives for one call
    if client is not None:
        yield client
        return
    async with HttpRegistryClient(timeout=config.timeout) as default_client:
        yield default_client


def _failed(collector: MetricsCollector, error: AnalyzerError) -> AnalyzerError:
    collector.mark_success(False)
    error.attach_metrics(collector.snapshot())
    return error


async def load(
    reference: str,
    config: Optional[LoadConfig] = None,
    *,
    client: Optional[RegistryClient] = None,
    **overrides: Any,
) -> tuple[Image, Metrics]:
    """원격 컨테이너 이미지를 가져와 구조화된 Image로 변환합니다.

    참조 검증 → 재시도 가능한 fetch → 메타데이터 build 순서로 실행되며,
    모든 실패는 AnalyzerError 하나로 정규화됩니다.

    Args:
        reference: 이미지 참조 (예: "ghcr.io/org/app:1.0",
            "alpine@sha256:<hex>"). 태그 또는 digest가 반드시 필요합니다.
        config: 기본 설정 (생략 시 기본값: 30초 타임아웃, 재시도 2회, 0.5초 backoff)
        client: 레지스트리 클라이언트 (생략 시 HttpRegistryClient를 생성 후 종료)
        **overrides: LoadConfig 필드 덮어쓰기 (예: retries=0, metadata_only=True)

    Returns:
        tuple[Image, Metrics]: 불변 이미지와 실행 메트릭

    Raises:
        AnalyzerError: 실패 시 (error.code로 분기, error.metrics에 메트릭 첨부)

    Examples:
        # 레이어 메타데이터까지 분석
        image, metrics = await load("docker.io/library/alpine:3.20")
        print(f"레이어 수: {len(image.layers)}, 시도 횟수: {metrics.fetch_attempts}")

        # 메타데이터만 조회
        image, _ = await load("alpine:3.20", metadata_only=True)
    """
    collector = MetricsCollector()

    try:
        config = build_config(config, **overrides)
        parsed, digest_pinned = validate_reference(reference, client)

        async with _registry_client(client, config) as registry:
            async with asyncio.timeout(config.timeout) as scope:
                acquirer = ImageAcquirer(
                    registry, config, collector, reference, deadline=scope.when()
                )
                handle = await acquirer.fetch(parsed, digest_pinned)
                image = await acquirer.build(handle)

    except AnalyzerError as e:
        logger.debug(f"Loading {reference!r} failed: {e}")
        raise _failed(collector, e)
    except Exception as e:
        error = classify_registry_error("load", reference, e)
        logger.debug(f"Loading {reference!r} failed: {error}")
        raise _failed(collector, error) from e

    collector.mark_success(True)
    metrics = collector.snapshot()
    logger.info(
        f"Loaded {reference} ({image.digest}, {len(image.layers)} layers) "
        f"in {metrics.total_duration:.3f}s"
    )
    return image, metrics
