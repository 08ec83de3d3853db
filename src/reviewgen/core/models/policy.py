"""策略配置模型 -- 缓存策略、告警阈值、A/B 实验

由 ConfigManager 持有，被 CacheLayer / MetricsManager / ABAssigner 消费。
"""

from pydantic import BaseModel, ConfigDict, Field


class CachePolicy(BaseModel):
    """缓存策略"""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="是否启用缓存")
    ttl_s: float = Field(default=3600.0, gt=0, description="条目存活时间（秒）")
    max_size: int = Field(default=100, ge=1, description="最大条目数")
    purge_interval_s: float = Field(default=3600.0, gt=0, description="过期清理间隔（秒）")


class AlertThresholds(BaseModel):
    """告警阈值"""

    model_config = ConfigDict(frozen=True)

    error_rate: float = Field(default=0.1, ge=0, le=1, description="错误率阈值")
    avg_latency_ms: float = Field(default=5000.0, gt=0, description="平均延迟阈值（毫秒）")
    daily_cost_usd: float = Field(default=1.0, ge=0, description="日成本阈值（USD）")


class MonitoringPolicy(BaseModel):
    """监控策略"""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="是否启用监控")
    thresholds: AlertThresholds = Field(default_factory=AlertThresholds)
    report_interval_s: float = Field(default=60.0, gt=0, description="指标汇报间隔（秒）")


class ABTestingPolicy(BaseModel):
    """A/B 实验配置 -- 仅用于指标打标，不改变路由"""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=False, description="是否启用 A/B 打标")
    llm_percentage: float = Field(default=50.0, ge=0, le=100, description="llm 分组占比（%）")
    max_sessions: int = Field(default=10_000, ge=1, description="会话分组表上限")
