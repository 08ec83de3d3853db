"""reviewgen core 数据模型导出"""

from .enums import (
    ABVariant,
    AlertType,
    GenerationSource,
    MetricEventType,
    TripType,
    Voice,
    source_label_for_rank,
)
from .metrics import (
    AlertEvent,
    CacheCounters,
    CostLedger,
    CostSummary,
    FallbackCounters,
    LatencyStats,
    MetricEvent,
    MetricsSnapshot,
    MetricsSummary,
    ProviderCounters,
    RequestCounters,
)
from .policy import ABTestingPolicy, AlertThresholds, CachePolicy, MonitoringPolicy
from .request import FINGERPRINT_FIELDS, GenerationRequest
from .result import GenerationResult

__all__ = [
    "ABVariant",
    "AlertType",
    "GenerationSource",
    "MetricEventType",
    "TripType",
    "Voice",
    "source_label_for_rank",
    "AlertEvent",
    "CacheCounters",
    "CostLedger",
    "CostSummary",
    "FallbackCounters",
    "LatencyStats",
    "MetricEvent",
    "MetricsSnapshot",
    "MetricsSummary",
    "ProviderCounters",
    "RequestCounters",
    "ABTestingPolicy",
    "AlertThresholds",
    "CachePolicy",
    "MonitoringPolicy",
    "FINGERPRINT_FIELDS",
    "GenerationRequest",
    "GenerationResult",
]
