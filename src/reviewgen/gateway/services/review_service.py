"""ReviewService -- 对外公开接口 + 组合根

公开接口: generate / get_metrics_summary / check_availability。
build_review_service() 是唯一的组合根：显式创建并注入所有组件，
不存在按名称查找的全局单例。
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx
import structlog

from reviewgen.core import EventBus
from reviewgen.core.config import get_reviews_rate_limit
from reviewgen.core.models import (
    GenerationRequest,
    GenerationResult,
    MetricsSnapshot,
    MetricsSummary,
)
from reviewgen.core.store import KeyValueStore
from reviewgen.provider import (
    ABAssigner,
    CacheLayer,
    ConfigManager,
    FallbackOrchestrator,
    GeneratorSettings,
    InFlightRegistry,
    MetricsManager,
    ProviderClient,
    TemplateEngine,
)

from .llm_proxy import SlidingWindowRateLimiter

log = structlog.get_logger()


class ReviewService:
    """点评生成服务"""

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        config_manager: ConfigManager,
        metrics: MetricsManager,
        cache: CacheLayer,
        event_bus: EventBus,
        clients: list[ProviderClient],
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._config_manager = config_manager
        self._metrics = metrics
        self._cache = cache
        self._event_bus = event_bus
        self._clients = clients
        self._rate_limiter = rate_limiter
        self._background: list[asyncio.Task] = []

    @property
    def config_manager(self) -> ConfigManager:
        return self._config_manager

    @property
    def metrics(self) -> MetricsManager:
        return self._metrics

    @property
    def cache(self) -> CacheLayer:
        return self._cache

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def orchestrator(self) -> FallbackOrchestrator:
        return self._orchestrator

    async def generate(
        self,
        request: GenerationRequest,
        session_id: str | None = None,
    ) -> GenerationResult:
        return await self._orchestrator.generate(request, session_id=session_id)

    def admit(self, client_id: str) -> bool:
        """终端用户入口限流，未配置限流器时总是放行"""
        if self._rate_limiter is None:
            return True
        return self._rate_limiter.allow(client_id)

    def retry_after(self, client_id: str) -> int:
        if self._rate_limiter is None:
            return 0
        return self._rate_limiter.retry_after(client_id)

    def get_metrics_summary(self) -> MetricsSummary:
        return self._metrics.get_metrics_summary()

    def get_snapshot(self) -> MetricsSnapshot:
        return self._metrics.get_snapshot()

    async def check_availability(self, refresh: bool = False) -> dict[str, bool]:
        """provider 可用性

        Args:
            refresh: True 时立即探测，否则返回最近一次结果
        """
        if refresh:
            return await self._config_manager.check_availability()
        return self._config_manager.get_availability()

    async def clear_cache(self) -> int:
        return await self._cache.clear()

    def cache_stats(self) -> dict[str, Any]:
        return self._cache.stats()

    async def _availability_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            await self._config_manager.check_availability()

    def start_background_tasks(self) -> None:
        """启动后台任务：可用性刷新、缓存清理、指标汇报"""
        settings = self._config_manager.settings
        self._background.append(
            asyncio.create_task(
                self._availability_loop(settings.availability_refresh_s),
                name="availability_refresh",
            )
        )
        if self._cache.policy.enabled:
            self._background.append(
                asyncio.create_task(self._cache.run_purge_loop(), name="cache_purge")
            )
        if self._metrics.policy.enabled:
            self._background.append(
                asyncio.create_task(self._metrics.run_reporter(), name="metrics_reporter")
            )
        log.info("background_tasks_started", tasks=[t.get_name() for t in self._background])

    async def aclose(self) -> None:
        """停止后台任务并关闭自有资源"""
        for task in self._background:
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        for client in self._clients:
            await client.aclose()
        self._cache.close()


def build_review_service(
    settings: GeneratorSettings,
    kv_store: KeyValueStore | None,
    http_client: httpx.AsyncClient | None = None,
    event_bus: EventBus | None = None,
    now: Callable[[], datetime] | None = None,
    template_engine: TemplateEngine | None = None,
    rate_limiter: SlidingWindowRateLimiter | None = None,
) -> ReviewService:
    """组合根 -- 按配置装配全部组件

    Args:
        settings: 生成编排层配置
        kv_store: 指标持久化存储，None 表示不持久化
        http_client: provider 调用共享的 httpx 客户端
        event_bus: 告警发布通道
        now: 指标时钟（测试注入）
        template_engine: 模板生成器（测试注入）
        rate_limiter: /api/reviews 入口限流器，None 时按 REVIEWGEN_REVIEWS_RATE_LIMIT 构造

    注意: 返回的服务尚未从存储恢复指标，调用方需 await service.metrics.load()。
    """
    config_manager = ConfigManager(settings)
    bus = event_bus or EventBus()

    clients = [
        ProviderClient(config_manager, pid, http_client=http_client)
        for pid in config_manager.provider_ids()
    ]
    for client in clients:
        config_manager.register_probe(client.provider_id, client.health_check)

    metrics_kwargs: dict[str, Any] = {}
    if now is not None:
        metrics_kwargs["now"] = now
    metrics = MetricsManager(
        store=kv_store,
        policy=config_manager.monitoring_policy,
        event_bus=bus,
        ab_enabled=config_manager.ab_testing_policy.enabled,
        availability_provider=config_manager.get_availability,
        **metrics_kwargs,
    )
    cache = CacheLayer(config_manager.cache_policy)
    ab_assigner = (
        ABAssigner(config_manager.ab_testing_policy)
        if config_manager.ab_testing_policy.enabled
        else None
    )
    orchestrator = FallbackOrchestrator(
        config_manager=config_manager,
        clients=clients,
        metrics=metrics,
        cache=cache,
        template_engine=template_engine,
        inflight=InFlightRegistry(),
        ab_assigner=ab_assigner,
    )
    if rate_limiter is None and (limit := get_reviews_rate_limit()) > 0:
        rate_limiter = SlidingWindowRateLimiter(max_requests=limit)

    log.info(
        "review_service_built",
        providers=config_manager.provider_ids(),
        proxy_enabled=config_manager.proxy.enabled,
        cache_enabled=config_manager.cache_policy.enabled,
        ab_enabled=config_manager.ab_testing_policy.enabled,
    )
    return ReviewService(
        orchestrator=orchestrator,
        config_manager=config_manager,
        metrics=metrics,
        cache=cache,
        event_bus=bus,
        clients=clients,
        rate_limiter=rate_limiter,
    )
