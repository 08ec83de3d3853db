"""FallbackOrchestrator -- 生成编排核心

降级链: cache -> primary -> secondary -> ... -> TemplateEngine
同一 fingerprint 同一时刻至多一个上游调用（InFlightRegistry），
其余并发调用等待并共享结果。Provider 级错误在此吸收并降级，
唯一会抛给调用方的是 TemplateEngineError（程序缺陷）。
"""

import asyncio
import time
from collections.abc import Iterable

import structlog
from ulid import ULID

from reviewgen.core.models import (
    GenerationRequest,
    GenerationResult,
    GenerationSource,
    MetricEvent,
)

from .ab_testing import ABAssigner
from .cache import CacheLayer, InFlightRegistry
from .client import ProviderClient
from .config import ConfigManager
from .exceptions import CacheUnavailableError, TemplateEngineError
from .metrics import MetricsManager
from .template_engine import TemplateEngine

log = structlog.get_logger()

TEMPLATE_PROVIDER_ID = "template"


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class FallbackOrchestrator:
    """降级编排器

    所有协作者由组合根显式注入。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        clients: Iterable[ProviderClient],
        metrics: MetricsManager,
        cache: CacheLayer | None = None,
        template_engine: TemplateEngine | None = None,
        inflight: InFlightRegistry | None = None,
        ab_assigner: ABAssigner | None = None,
    ) -> None:
        """初始化编排器

        Args:
            config_manager: 配置管理器（决定 provider 顺序）
            clients: provider 客户端，按 config_manager 的优先级排序使用
            metrics: 指标管理器
            cache: 结果缓存，None 表示不缓存
            template_engine: 末端模板生成器
            inflight: in-flight 去重注册表
            ab_assigner: A/B 分组器，None 表示不打标
        """
        self._config_manager = config_manager
        by_id = {c.provider_id: c for c in clients}
        self._clients = [by_id[pid] for pid in config_manager.provider_ids() if pid in by_id]
        self._metrics = metrics
        self._cache = cache
        self._template_engine = template_engine or TemplateEngine()
        self._inflight = inflight or InFlightRegistry()
        self._ab_assigner = ab_assigner

    @property
    def clients(self) -> list[ProviderClient]:
        return list(self._clients)

    @property
    def inflight(self) -> InFlightRegistry:
        return self._inflight

    async def generate(
        self,
        request: GenerationRequest,
        session_id: str | None = None,
    ) -> GenerationResult:
        """生成点评

        Args:
            request: 生成请求
            session_id: 会话标识（A/B 打标使用）

        Returns:
            GenerationResult，text 永不为空

        Raises:
            TemplateEngineError: 模板兜底失败（程序缺陷）
        """
        start = time.monotonic()
        request_id = str(ULID())
        variant = await self._assign_variant(session_id)
        await self._metrics.record(MetricEvent.request_started())

        key = request.fingerprint()
        cached = await self._cache_lookup(key)
        if cached is not None:
            return await self._serve_cached(cached, request_id, start, variant)

        while True:
            future, is_owner = self._inflight.claim(key)
            if is_owner:
                break
            log.debug("inflight_joined", request_id=request_id, fingerprint=key[:12])
            try:
                shared = await asyncio.shield(future)
            except asyncio.CancelledError:
                task = asyncio.current_task()
                # owner 被取消而非自身被取消：重新竞争 owner
                if future.cancelled() and task is not None and not task.cancelling():
                    continue
                raise
            latency_ms = _elapsed_ms(start)
            await self._metrics.record(
                MetricEvent.inflight_shared(
                    latency_ms=latency_ms,
                    template=shared.source == GenerationSource.TEMPLATE,
                )
            )
            return shared.model_copy(
                update={
                    "request_id": request_id,
                    "latency_ms": latency_ms,
                    "cost_usd": 0.0,
                    "ab_variant": variant,
                }
            )

        try:
            result = await self._generate_owned(request, key, request_id, start, variant)
        except BaseException as e:
            self._inflight.fail(key, e)
            raise
        self._inflight.resolve(key, result)
        return result

    async def _generate_owned(
        self,
        request: GenerationRequest,
        key: str,
        request_id: str,
        start: float,
        variant: str | None,
    ) -> GenerationResult:
        # 上一个 owner 可能在本次 lookup 之后、claim 之前完成并写入缓存
        cached = await self._cache_lookup(key, record_miss=False)
        if cached is not None:
            return await self._serve_cached(cached, request_id, start, variant)

        for client in self._clients:
            if not client.is_available():
                log.debug("provider_skipped_unavailable", provider=client.provider_id)
                continue

            try:
                raw = await client.call(request)
            except Exception as e:
                log.warning(
                    "provider_stage_failed",
                    provider=client.provider_id,
                    source=client.label,
                    attempts=getattr(e, "attempts", 0),
                    error=str(e),
                    error_type=type(e).__name__,
                    request_id=request_id,
                )
                await self._metrics.record(MetricEvent.provider_error(client.provider_id))
                continue

            latency_ms = _elapsed_ms(start)
            result = GenerationResult(
                text=raw.text,
                source=client.label,
                provider=client.provider_id,
                model_id=raw.model_id,
                request_id=request_id,
                latency_ms=latency_ms,
                cost_usd=raw.cost_usd,
                cached=False,
                tokens_used=raw.token_usage.total_tokens,
                tokens_estimated=raw.tokens_estimated,
                ab_variant=variant,
            )
            await self._cache_store(key, result)
            await self._metrics.record(
                MetricEvent.provider_success(
                    provider=client.provider_id,
                    latency_ms=latency_ms,
                    tokens=raw.token_usage.total_tokens,
                    cost_usd=raw.cost_usd,
                )
            )
            log.info(
                "generation_completed",
                source=result.source,
                provider=client.provider_id,
                latency_ms=latency_ms,
                cost_usd=raw.cost_usd,
                request_id=request_id,
            )
            return result

        return await self._template_fallback(request, request_id, start, variant)

    async def _template_fallback(
        self,
        request: GenerationRequest,
        request_id: str,
        start: float,
        variant: str | None,
    ) -> GenerationResult:
        try:
            text = self._template_engine.generate(request)
        except TemplateEngineError:
            log.error("template_engine_defect", request_id=request_id)
            raise
        except Exception as e:
            log.error("template_engine_defect", request_id=request_id, error=str(e))
            raise TemplateEngineError(f"模板生成异常: {type(e).__name__}: {e}") from e

        if not isinstance(text, str) or not text.strip():
            log.error("template_engine_defect", request_id=request_id, error="empty_text")
            raise TemplateEngineError("模板生成结果为空")

        latency_ms = _elapsed_ms(start)
        await self._metrics.record(MetricEvent.template_fallback(latency_ms=latency_ms))
        log.info(
            "template_fallback_used",
            latency_ms=latency_ms,
            request_id=request_id,
        )
        # 模板结果不写缓存：provider 恢复后应重新尝试 remote 生成
        return GenerationResult(
            text=text,
            source=GenerationSource.TEMPLATE.value,
            provider=TEMPLATE_PROVIDER_ID,
            model_id=TEMPLATE_PROVIDER_ID,
            request_id=request_id,
            latency_ms=latency_ms,
            cost_usd=0.0,
            cached=False,
            tokens_used=0,
            ab_variant=variant,
        )

    async def _serve_cached(
        self,
        cached: GenerationResult,
        request_id: str,
        start: float,
        variant: str | None,
    ) -> GenerationResult:
        latency_ms = _elapsed_ms(start)
        await self._metrics.record(MetricEvent.cache_hit(latency_ms=latency_ms))
        log.info(
            "generation_cache_hit",
            original_source=cached.source,
            latency_ms=latency_ms,
            request_id=request_id,
        )
        return cached.model_copy(
            update={
                "source": GenerationSource.CACHE.value,
                "cached": True,
                "original_source": cached.source,
                "request_id": request_id,
                "latency_ms": latency_ms,
                "cost_usd": 0.0,
                "ab_variant": variant,
            }
        )

    async def _cache_lookup(self, key: str, record_miss: bool = True) -> GenerationResult | None:
        if self._cache is None or not self._cache.policy.enabled:
            return None
        try:
            cached = await self._cache.lookup(key)
        except CacheUnavailableError as e:
            log.warning("cache_unavailable", op="lookup", error=str(e))
            return None
        if cached is None and record_miss:
            await self._metrics.record(MetricEvent.cache_miss())
        return cached

    async def _cache_store(self, key: str, result: GenerationResult) -> None:
        if self._cache is None or not self._cache.policy.enabled:
            return
        try:
            await self._cache.store(key, result)
        except CacheUnavailableError as e:
            log.warning("cache_unavailable", op="store", error=str(e))

    async def _assign_variant(self, session_id: str | None) -> str | None:
        if self._ab_assigner is None:
            return None
        variant, is_new = self._ab_assigner.assign(session_id)
        if variant is None:
            return None
        if is_new:
            await self._metrics.record(MetricEvent.ab_assignment(variant.value))
        return variant.value
