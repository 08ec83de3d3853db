"""枚举定义

TripType / Voice: 生成请求的取值范围。
GenerationSource: 结果来源（provenance），remote provider 按优先级映射 label。
MetricEventType / AlertType: MetricsManager 事件与告警类型。
"""

from enum import StrEnum


class TripType(StrEnum):
    """出行类型"""

    LEISURE = "leisure"
    BUSINESS = "business"
    FAMILY = "family"
    ROMANTIC = "romantic"
    SOLO = "solo"
    GROUP = "group"


class Voice(StrEnum):
    """文风"""

    FRIENDLY = "friendly"
    PROFESSIONAL = "professional"
    ENTHUSIASTIC = "enthusiastic"
    DETAILED = "detailed"


class GenerationSource(StrEnum):
    """结果来源

    remote provider 的 label 按 priority rank 分配：
    primary -> secondary -> tertiary -> fallback_<n>
    """

    PRIMARY = "primary"
    SECONDARY = "secondary"
    TERTIARY = "tertiary"
    TEMPLATE = "template"
    CACHE = "cache"


# rank -> label，超出部分使用 fallback_<n>
_RANK_LABELS = (
    GenerationSource.PRIMARY,
    GenerationSource.SECONDARY,
    GenerationSource.TERTIARY,
)


def source_label_for_rank(rank: int) -> str:
    """按优先级序号返回 source label

    Args:
        rank: 0 起始的优先级序号

    Returns:
        "primary" / "secondary" / "tertiary" / "fallback_<rank>"
    """
    if 0 <= rank < len(_RANK_LABELS):
        return _RANK_LABELS[rank].value
    return f"fallback_{rank}"


class MetricEventType(StrEnum):
    """MetricsManager.record() 接受的事件类型"""

    REQUEST_STARTED = "request_started"
    PROVIDER_SUCCESS = "provider_success"
    PROVIDER_ERROR = "provider_error"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    TEMPLATE_FALLBACK = "template_fallback"
    INFLIGHT_SHARED = "inflight_shared"
    AB_ASSIGNMENT = "ab_assignment"


class AlertType(StrEnum):
    """告警类型"""

    ERROR_RATE = "error_rate"
    LATENCY = "latency"
    COST = "cost"


class ABVariant(StrEnum):
    """A/B 实验分组（仅用于指标打标）"""

    LLM = "llm"
    TEMPLATE = "template"
