"""MetricsManager -- 计数器、延迟聚合、成本账本与告警

进程级共享状态，所有变更经 asyncio.Lock 串行化。
每次 record() 后评估告警阈值（边沿触发：越过阈值发布一次，回落后重新武装），
并通过 KeyValueStore 尽力持久化；持久化失败只记日志，不影响请求。
"""

import asyncio
import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from reviewgen.core import ALERTS_TOPIC, EventBus
from reviewgen.core.config import COST_STORE_KEY, METRICS_STORE_KEY
from reviewgen.core.models import (
    AlertEvent,
    AlertType,
    CostLedger,
    CostSummary,
    MetricEvent,
    MetricEventType,
    MetricsSnapshot,
    MetricsSummary,
    MonitoringPolicy,
    ProviderCounters,
)
from reviewgen.core.store import KeyValueStore

from .exceptions import MetricsPersistError

log = structlog.get_logger()

# 计入延迟聚合的终态事件
_LATENCY_EVENTS = frozenset(
    {
        MetricEventType.PROVIDER_SUCCESS,
        MetricEventType.CACHE_HIT,
        MetricEventType.TEMPLATE_FALLBACK,
        MetricEventType.INFLIGHT_SHARED,
    }
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def day_key(ts: datetime) -> str:
    return ts.astimezone(UTC).strftime("%Y-%m-%d")


def month_key(ts: datetime) -> str:
    return ts.astimezone(UTC).strftime("%Y-%m")


class MetricsManager:
    """指标管理器

    Args:
        store: 持久化 KV 存储，None 表示不持久化
        policy: 监控策略（阈值 / 开关 / 汇报间隔）
        event_bus: 告警发布通道，None 时告警只记日志
        now: 时钟（测试可注入），返回 aware datetime
        ab_enabled: 汇总中是否包含 A/B 分组计数
        availability_provider: 汇总中附带的 provider 可用性快照来源
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        policy: MonitoringPolicy | None = None,
        event_bus: EventBus | None = None,
        now: Callable[[], datetime] = _utcnow,
        ab_enabled: bool = False,
        availability_provider: Callable[[], dict[str, bool]] | None = None,
    ) -> None:
        self._store = store
        self._policy = policy or MonitoringPolicy()
        self._event_bus = event_bus
        self._now = now
        self._ab_enabled = ab_enabled
        self._availability_provider = availability_provider
        self._snapshot = MetricsSnapshot(thresholds=self._policy.thresholds)
        self._lock = asyncio.Lock()
        self._persist_lock = asyncio.Lock()
        # 当前处于"已越过阈值"状态的告警类型
        self._tripped: set[AlertType] = set()

    @property
    def policy(self) -> MonitoringPolicy:
        return self._policy

    # ============================================================
    # 持久化
    # ============================================================

    async def load(self) -> None:
        """启动时从 KV 存储恢复计数器与成本账本

        数据损坏时丢弃并从零开始，不阻塞启动。
        """
        if self._store is None:
            return

        try:
            raw_metrics = await self._store.get(METRICS_STORE_KEY)
            raw_cost = await self._store.get(COST_STORE_KEY)
        except Exception as e:
            log.warning("metrics_load_failed", error=str(e), error_type=type(e).__name__)
            return

        async with self._lock:
            if raw_metrics:
                try:
                    restored = MetricsSnapshot.model_validate_json(raw_metrics)
                    # 阈值以当前配置为准
                    self._snapshot = restored.model_copy(
                        update={"thresholds": self._policy.thresholds, "cost": self._snapshot.cost}
                    )
                except ValidationError as e:
                    log.warning("metrics_snapshot_corrupted", error=str(e))
            if raw_cost:
                try:
                    self._snapshot.cost = CostLedger.model_validate_json(raw_cost)
                except ValidationError as e:
                    log.warning("cost_ledger_corrupted", error=str(e))

        log.info(
            "metrics_loaded",
            total_requests=self._snapshot.requests.total,
            total_cost_usd=self._snapshot.cost.total,
        )

    async def flush(self) -> None:
        """将当前状态写入 KV 存储

        Raises:
            MetricsPersistError: 写入失败
        """
        if self._store is None:
            return
        async with self._persist_lock:
            # 序列化与写入之间不让出事件循环，保证写入的是最新状态
            metrics_json = self._snapshot.model_dump_json(exclude={"cost"})
            cost_json = self._snapshot.cost.model_dump_json()
            try:
                await self._store.set(METRICS_STORE_KEY, metrics_json)
                await self._store.set(COST_STORE_KEY, cost_json)
            except Exception as e:
                raise MetricsPersistError(
                    f"指标持久化失败: {type(e).__name__}: {e}"
                ) from e

    # ============================================================
    # 记录
    # ============================================================

    async def record(self, event: MetricEvent) -> list[AlertEvent]:
        """记录一个指标事件，随后评估告警并尽力持久化

        Returns:
            本次新触发的告警列表
        """
        async with self._lock:
            self._apply(event)
            alerts = self._evaluate_thresholds() if self._policy.enabled else []

        for alert in alerts:
            self._emit(alert)

        try:
            await self.flush()
        except MetricsPersistError as e:
            log.warning("metrics_persist_failed", error=str(e), event_type=event.type.value)

        return alerts

    def _provider_counters(self, provider: str) -> ProviderCounters:
        counters = self._snapshot.providers.get(provider)
        if counters is None:
            counters = ProviderCounters()
            self._snapshot.providers[provider] = counters
        return counters

    def _apply(self, event: MetricEvent) -> None:
        snap = self._snapshot
        match event.type:
            case MetricEventType.REQUEST_STARTED:
                snap.requests.total += 1
            case MetricEventType.PROVIDER_SUCCESS:
                snap.requests.success += 1
                counters = self._provider_counters(event.provider or "unknown")
                counters.success += 1
                counters.total_tokens += event.tokens
                counters.cost_usd += event.cost_usd
                self._add_cost(event.cost_usd)
            case MetricEventType.PROVIDER_ERROR:
                self._provider_counters(event.provider or "unknown").errors += 1
            case MetricEventType.CACHE_HIT:
                snap.requests.success += 1
                snap.cache.hits += 1
            case MetricEventType.CACHE_MISS:
                snap.cache.misses += 1
            case MetricEventType.TEMPLATE_FALLBACK:
                snap.requests.errors += 1
                snap.fallback.template += 1
            case MetricEventType.INFLIGHT_SHARED:
                snap.requests.deduplicated += 1
                if event.provider == "template":
                    snap.requests.errors += 1
                else:
                    snap.requests.success += 1
            case MetricEventType.AB_ASSIGNMENT:
                variant = event.variant or "unknown"
                snap.ab_testing[variant] = snap.ab_testing.get(variant, 0) + 1

        if event.type in _LATENCY_EVENTS and event.latency_ms is not None:
            latency = snap.latency
            latency.sum_ms += event.latency_ms
            latency.count += 1
            latency.max_ms = max(latency.max_ms, event.latency_ms)
            if latency.min_ms is None or event.latency_ms < latency.min_ms:
                latency.min_ms = event.latency_ms

    def _add_cost(self, cost_usd: float) -> None:
        if cost_usd <= 0:
            return
        ledger = self._snapshot.cost
        now = self._now()
        day, month = day_key(now), month_key(now)
        ledger.daily[day] = ledger.daily.get(day, 0.0) + cost_usd
        ledger.monthly[month] = ledger.monthly.get(month, 0.0) + cost_usd
        ledger.total += cost_usd

    # ============================================================
    # 告警
    # ============================================================

    def _current_values(self) -> dict[AlertType, tuple[float, float] | None]:
        snap = self._snapshot
        thresholds = self._policy.thresholds
        total = snap.requests.total
        return {
            AlertType.ERROR_RATE: (
                (snap.requests.errors / total, thresholds.error_rate) if total else None
            ),
            AlertType.LATENCY: (
                (snap.latency.avg_ms, thresholds.avg_latency_ms) if snap.latency.count else None
            ),
            AlertType.COST: (self.today_cost(), thresholds.daily_cost_usd),
        }

    def _evaluate_thresholds(self) -> list[AlertEvent]:
        fired: list[AlertEvent] = []
        for alert_type, reading in self._current_values().items():
            exceeded = reading is not None and reading[0] > reading[1]
            if not exceeded:
                self._tripped.discard(alert_type)
                continue
            if alert_type in self._tripped:
                continue
            self._tripped.add(alert_type)
            value, threshold = reading
            fired.append(
                AlertEvent(
                    type=alert_type,
                    message=_alert_message(alert_type, value, threshold),
                    value=value,
                    threshold=threshold,
                    ts=self._now(),
                )
            )
        return fired

    async def check_alert_thresholds(self) -> list[AlertEvent]:
        """按当前状态评估告警（record() 后自动调用，也可手动触发）"""
        if not self._policy.enabled:
            return []
        async with self._lock:
            alerts = self._evaluate_thresholds()
        for alert in alerts:
            self._emit(alert)
        return alerts

    def _emit(self, alert: AlertEvent) -> None:
        log.warning(
            "metrics_alert",
            alert_type=alert.type.value,
            value=alert.value,
            threshold=alert.threshold,
            message=alert.message,
        )
        if self._event_bus is not None:
            self._event_bus.publish(ALERTS_TOPIC, alert)

    # ============================================================
    # 查询
    # ============================================================

    def today_cost(self) -> float:
        return self._snapshot.cost.daily.get(day_key(self._now()), 0.0)

    def get_snapshot(self) -> MetricsSnapshot:
        """当前指标快照（深拷贝，调用方修改不影响内部状态）"""
        return self._snapshot.model_copy(deep=True)

    def get_metrics_summary(self) -> MetricsSummary:
        snap = self.get_snapshot()
        total = snap.requests.total
        lookups = snap.cache.hits + snap.cache.misses
        now = self._now()
        return MetricsSummary(
            requests=snap.requests,
            success_rate=snap.requests.success / total if total else 0.0,
            cache_hit_rate=snap.cache.hits / lookups if lookups else 0.0,
            avg_latency_ms=snap.latency.avg_ms,
            max_latency_ms=snap.latency.max_ms,
            cost=CostSummary(
                today_usd=snap.cost.daily.get(day_key(now), 0.0),
                this_month_usd=snap.cost.monthly.get(month_key(now), 0.0),
                total_usd=snap.cost.total,
            ),
            providers=snap.providers,
            fallbacks=snap.fallback,
            ab_testing=snap.ab_testing if self._ab_enabled else None,
            availability=self._availability_provider() if self._availability_provider else {},
        )

    async def run_reporter(self, interval_s: float | None = None) -> None:
        """后台定期输出指标汇总日志并落盘，直到被取消"""
        interval = interval_s or self._policy.report_interval_s
        while True:
            await asyncio.sleep(interval)
            summary = self.get_metrics_summary()
            log.info("metrics_report", **_report_fields(summary))
            try:
                await self.flush()
            except MetricsPersistError as e:
                log.warning("metrics_persist_failed", error=str(e), event_type="report")


def _alert_message(alert_type: AlertType, value: float, threshold: float) -> str:
    match alert_type:
        case AlertType.ERROR_RATE:
            return f"错误率过高: {value:.1%} > {threshold:.1%}"
        case AlertType.LATENCY:
            return f"平均延迟过高: {value:.0f}ms > {threshold:.0f}ms"
        case AlertType.COST:
            return f"当日成本超限: ${value:.4f} > ${threshold:.4f}"
    return f"{alert_type}: {value} > {threshold}"


def _report_fields(summary: MetricsSummary) -> dict[str, Any]:
    return {
        "total_requests": summary.requests.total,
        "success_rate": round(summary.success_rate, 4),
        "cache_hit_rate": round(summary.cache_hit_rate, 4),
        "avg_latency_ms": round(summary.avg_latency_ms, 1),
        "template_fallbacks": summary.fallbacks.template,
        "cost_today_usd": round(summary.cost.today_usd, 6),
        "providers": json.dumps(
            {pid: c.model_dump() for pid, c in summary.providers.items()},
            sort_keys=True,
        ),
    }
