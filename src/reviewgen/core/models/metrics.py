"""指标数据模型 -- MetricEvent / MetricsSnapshot / MetricsSummary / AlertEvent

MetricsSnapshot 进程级共享，计数器单调递增；
成本账本按日（YYYY-MM-DD）和按月（YYYY-MM）分键，自然滚动。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from .enums import AlertType, MetricEventType
from .policy import AlertThresholds


class MetricEvent(BaseModel):
    """MetricsManager.record() 的输入事件"""

    type: MetricEventType
    provider: str | None = Field(default=None, description="provider id")
    latency_ms: float | None = Field(default=None, ge=0, description="请求耗时（毫秒）")
    tokens: int = Field(default=0, ge=0)
    cost_usd: float = Field(default=0.0, ge=0.0)
    variant: str | None = Field(default=None, description="A/B 分组")

    @classmethod
    def request_started(cls) -> "MetricEvent":
        return cls(type=MetricEventType.REQUEST_STARTED)

    @classmethod
    def provider_success(
        cls,
        provider: str,
        latency_ms: float,
        tokens: int = 0,
        cost_usd: float = 0.0,
    ) -> "MetricEvent":
        return cls(
            type=MetricEventType.PROVIDER_SUCCESS,
            provider=provider,
            latency_ms=latency_ms,
            tokens=tokens,
            cost_usd=cost_usd,
        )

    @classmethod
    def provider_error(cls, provider: str) -> "MetricEvent":
        return cls(type=MetricEventType.PROVIDER_ERROR, provider=provider)

    @classmethod
    def cache_hit(cls, latency_ms: float = 0.0) -> "MetricEvent":
        return cls(type=MetricEventType.CACHE_HIT, latency_ms=latency_ms)

    @classmethod
    def cache_miss(cls) -> "MetricEvent":
        return cls(type=MetricEventType.CACHE_MISS)

    @classmethod
    def template_fallback(cls, latency_ms: float = 0.0) -> "MetricEvent":
        return cls(type=MetricEventType.TEMPLATE_FALLBACK, latency_ms=latency_ms)

    @classmethod
    def inflight_shared(cls, latency_ms: float = 0.0, template: bool = False) -> "MetricEvent":
        """共享 in-flight 结果的跟随请求；template 表示共享到的是模板兜底结果"""
        return cls(
            type=MetricEventType.INFLIGHT_SHARED,
            latency_ms=latency_ms,
            provider="template" if template else None,
        )

    @classmethod
    def ab_assignment(cls, variant: str) -> "MetricEvent":
        return cls(type=MetricEventType.AB_ASSIGNMENT, variant=variant)


class RequestCounters(BaseModel):
    total: int = 0
    success: int = 0
    errors: int = 0
    deduplicated: int = 0


class ProviderCounters(BaseModel):
    success: int = 0
    errors: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0


class CacheCounters(BaseModel):
    hits: int = 0
    misses: int = 0


class FallbackCounters(BaseModel):
    template: int = 0


class LatencyStats(BaseModel):
    """延迟聚合（毫秒）"""

    sum_ms: float = 0.0
    count: int = 0
    min_ms: float | None = None
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.sum_ms / self.count if self.count else 0.0


class CostLedger(BaseModel):
    """成本账本 -- 日/月分键 + 累计总额"""

    daily: dict[str, float] = Field(default_factory=dict)
    monthly: dict[str, float] = Field(default_factory=dict)
    total: float = 0.0


class MetricsSnapshot(BaseModel):
    """进程级指标快照"""

    requests: RequestCounters = Field(default_factory=RequestCounters)
    providers: dict[str, ProviderCounters] = Field(default_factory=dict)
    cache: CacheCounters = Field(default_factory=CacheCounters)
    fallback: FallbackCounters = Field(default_factory=FallbackCounters)
    latency: LatencyStats = Field(default_factory=LatencyStats)
    cost: CostLedger = Field(default_factory=CostLedger)
    thresholds: AlertThresholds = Field(default_factory=AlertThresholds)
    ab_testing: dict[str, int] = Field(default_factory=dict)


class CostSummary(BaseModel):
    today_usd: float = 0.0
    this_month_usd: float = 0.0
    total_usd: float = 0.0


class MetricsSummary(BaseModel):
    """对外的指标汇总视图（getMetricsSummary）"""

    requests: RequestCounters
    success_rate: float = Field(description="成功率 0-1")
    cache_hit_rate: float = Field(description="缓存命中率 0-1")
    avg_latency_ms: float
    max_latency_ms: float
    cost: CostSummary
    providers: dict[str, ProviderCounters]
    fallbacks: FallbackCounters
    ab_testing: dict[str, int] | None = None
    availability: dict[str, bool] = Field(default_factory=dict)


class AlertEvent(BaseModel):
    """告警事件 -- 通过 EventBus 发布"""

    type: AlertType
    message: str
    value: float
    threshold: float
    ts: datetime = Field(default_factory=lambda: datetime.now(UTC))
