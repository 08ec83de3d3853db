"""Provider 配置与 ConfigManager

从环境变量加载配置，provider 配置启动后不可变。
ConfigManager 额外维护可刷新的可用性状态（availability），
并负责代理路由：开启 proxy 时所有调用改写为同源 /api/llm-proxy/<provider>，
鉴权由代理在服务端注入，核心逻辑不持有密钥。
"""

import asyncio
import os
from collections.abc import Awaitable, Callable

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from reviewgen.core.models import (
    ABTestingPolicy,
    AlertThresholds,
    CachePolicy,
    MonitoringPolicy,
    source_label_for_rank,
)

from .backoff import BackoffPolicy

log = structlog.get_logger()

AvailabilityProbe = Callable[[], Awaitable[bool]]

# template 阶段永远可用
TEMPLATE_AVAILABILITY_KEY = "template"

# 应用自身调用同源代理时携带的内部令牌头
PROXY_TOKEN_HEADER = "X-Reviewgen-Proxy-Token"


class ProviderConfig(BaseModel):
    """单个 remote provider 的配置"""

    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(description="provider id（如 openai / groq）")
    endpoint: str = Field(description="直连模式下的 chat completions 端点")
    model_id: str = Field(description="模型名称")
    timeout_ms: int = Field(default=3000, ge=1, description="单次尝试超时（毫秒）")
    max_retries: int = Field(default=2, ge=0, description="额外重试次数")
    cost_per_1k_tokens: float = Field(default=0.0, ge=0.0, description="每 1k token 的 USD 成本")
    priority: int = Field(default=0, ge=0, description="优先级，越小越先尝试")
    enabled: bool = Field(default=True, description="是否启用")
    available: bool = Field(default=False, description="可用性（由探测刷新）")
    api_key: SecretStr = Field(
        default=SecretStr(""),
        description="直连模式使用的密钥，proxy 模式下不使用",
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=300, ge=1)
    use_system_prompt: bool = Field(default=True, description="是否附带 system message")
    user_prefix: str = Field(default="", description="user message 前缀")

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000


class ProxyConfig(BaseModel):
    """同源代理配置"""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="是否经由同源代理调用")
    url: str = Field(
        default="http://localhost:8000/api/llm-proxy",
        description="代理基础 URL，provider 调用改写为 <url>/<provider_id>",
    )
    internal_token: SecretStr = Field(
        default=SecretStr(""),
        description="内部调用令牌，为空时不发送",
    )


class GeneratorSettings(BaseModel):
    """生成编排层完整配置"""

    model_config = ConfigDict(frozen=True)

    providers: list[ProviderConfig] = Field(default_factory=list)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    cache: CachePolicy = Field(default_factory=CachePolicy)
    monitoring: MonitoringPolicy = Field(default_factory=MonitoringPolicy)
    ab_testing: ABTestingPolicy = Field(default_factory=ABTestingPolicy)
    backoff_base_ms: int = Field(default=1000, ge=0, description="退避基础延迟（毫秒）")
    backoff_jitter: float = Field(default=0.1, ge=0, le=1, description="退避抖动比例")
    availability_refresh_s: float = Field(default=300.0, gt=0, description="可用性刷新间隔（秒）")


def default_providers() -> list[ProviderConfig]:
    """默认 provider 链：openai（primary）-> groq（secondary）"""
    return [
        ProviderConfig(
            provider_id="openai",
            endpoint="https://api.openai.com/v1/chat/completions",
            model_id="gpt-4o-mini",
            timeout_ms=3000,
            max_retries=2,
            cost_per_1k_tokens=0.00015,
            priority=0,
            temperature=0.8,
            max_tokens=300,
            use_system_prompt=True,
        ),
        ProviderConfig(
            provider_id="groq",
            endpoint="https://api.groq.com/openai/v1/chat/completions",
            model_id="mixtral-8x7b-32768",
            timeout_ms=1000,
            max_retries=1,
            cost_per_1k_tokens=0.0,
            priority=1,
            temperature=0.7,
            max_tokens=250,
            use_system_prompt=False,
            user_prefix="Write a natural hotel review.",
        ),
    ]


def _env_bool(name: str, default: bool) -> bool:
    val = os.environ.get(name)
    if val is None or val == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: float, cast: type = float):
    val = os.environ.get(name)
    if val is None or val == "":
        return default
    try:
        return cast(val)
    except ValueError:
        log.warning(
            "invalid_number_config",
            env_var=name,
            value=val,
            fallback=default,
        )
        # 使用默认值，不阻塞启动
        return default


def load_generator_settings() -> GeneratorSettings:
    """从环境变量加载生成编排层配置

    环境变量映射:
        REVIEWGEN_USE_PROXY / REVIEWGEN_PROXY_URL / REVIEWGEN_PROXY_TOKEN -> proxy
        REVIEWGEN_<PROVIDER>_TIMEOUT_MS / _MAX_RETRIES / _ENABLED / _MODEL -> provider
        <PROVIDER>_API_KEY -> provider.api_key（仅直连模式使用）
        REVIEWGEN_CACHE_ENABLED / _TTL_S / _MAX_SIZE -> cache
        REVIEWGEN_ALERT_ERROR_RATE / _LATENCY_MS / _DAILY_COST_USD -> 告警阈值
        REVIEWGEN_AB_ENABLED / REVIEWGEN_AB_LLM_PERCENTAGE -> A/B 打标
        REVIEWGEN_BACKOFF_BASE_MS / _JITTER -> 退避
        REVIEWGEN_AVAILABILITY_REFRESH_S / REVIEWGEN_METRICS_REPORT_S -> 后台任务间隔

    Returns:
        GeneratorSettings 实例
    """
    providers = []
    for provider in default_providers():
        prefix = f"REVIEWGEN_{provider.provider_id.upper()}"
        update: dict = {
            "timeout_ms": _env_number(f"{prefix}_TIMEOUT_MS", provider.timeout_ms, int),
            "max_retries": _env_number(f"{prefix}_MAX_RETRIES", provider.max_retries, int),
            "enabled": _env_bool(f"{prefix}_ENABLED", provider.enabled),
        }
        if val := os.environ.get(f"{prefix}_MODEL"):
            update["model_id"] = val
        if val := os.environ.get(f"{provider.provider_id.upper()}_API_KEY"):
            update["api_key"] = SecretStr(val)
        # 经 model_validate 重新校验（model_copy 不做校验）
        providers.append(ProviderConfig.model_validate({**provider.model_dump(), **update}))

    proxy = ProxyConfig(
        enabled=_env_bool("REVIEWGEN_USE_PROXY", True),
        url=os.environ.get("REVIEWGEN_PROXY_URL") or ProxyConfig().url,
        internal_token=SecretStr(os.environ.get("REVIEWGEN_PROXY_TOKEN", "")),
    )
    cache = CachePolicy(
        enabled=_env_bool("REVIEWGEN_CACHE_ENABLED", True),
        ttl_s=_env_number("REVIEWGEN_CACHE_TTL_S", 3600.0),
        max_size=_env_number("REVIEWGEN_CACHE_MAX_SIZE", 100, int),
    )
    monitoring = MonitoringPolicy(
        enabled=_env_bool("REVIEWGEN_MONITORING_ENABLED", True),
        thresholds=AlertThresholds(
            error_rate=_env_number("REVIEWGEN_ALERT_ERROR_RATE", 0.1),
            avg_latency_ms=_env_number("REVIEWGEN_ALERT_LATENCY_MS", 5000.0),
            daily_cost_usd=_env_number("REVIEWGEN_ALERT_DAILY_COST_USD", 1.0),
        ),
        report_interval_s=_env_number("REVIEWGEN_METRICS_REPORT_S", 60.0),
    )
    ab_testing = ABTestingPolicy(
        enabled=_env_bool("REVIEWGEN_AB_ENABLED", False),
        llm_percentage=_env_number("REVIEWGEN_AB_LLM_PERCENTAGE", 50.0),
    )

    return GeneratorSettings(
        providers=providers,
        proxy=proxy,
        cache=cache,
        monitoring=monitoring,
        ab_testing=ab_testing,
        backoff_base_ms=_env_number("REVIEWGEN_BACKOFF_BASE_MS", 1000, int),
        backoff_jitter=_env_number("REVIEWGEN_BACKOFF_JITTER", 0.1),
        availability_refresh_s=_env_number("REVIEWGEN_AVAILABILITY_REFRESH_S", 300.0),
    )


class ConfigManager:
    """配置管理器

    - provider 配置不可变，按 priority 排序
    - availability 可刷新：静态判定（enabled + proxy/密钥）+ 注册的探测函数
    - 暴露 cache / monitoring / ab_testing 策略供其他组件消费
    """

    def __init__(self, settings: GeneratorSettings) -> None:
        self._settings = settings
        ordered = sorted(settings.providers, key=lambda p: p.priority)
        self._providers: dict[str, ProviderConfig] = {p.provider_id: p for p in ordered}
        self._probes: dict[str, AvailabilityProbe] = {}
        # 启动时先按静态条件判定，首次请求无需等待探测
        self._availability: dict[str, bool] = {
            pid: self._statically_available(cfg) for pid, cfg in self._providers.items()
        }

    @property
    def settings(self) -> GeneratorSettings:
        return self._settings

    @property
    def proxy(self) -> ProxyConfig:
        return self._settings.proxy

    @property
    def cache_policy(self) -> CachePolicy:
        return self._settings.cache

    @property
    def monitoring_policy(self) -> MonitoringPolicy:
        return self._settings.monitoring

    @property
    def ab_testing_policy(self) -> ABTestingPolicy:
        return self._settings.ab_testing

    def backoff_for(self, provider_id: str) -> BackoffPolicy:
        """按 provider 的 max_retries 构造退避策略"""
        cfg = self.get_provider(provider_id)
        return BackoffPolicy(
            max_retries=cfg.max_retries,
            base_delay_s=self._settings.backoff_base_ms / 1000,
            jitter=self._settings.backoff_jitter,
        )

    def provider_ids(self) -> list[str]:
        """按优先级排序的 provider id 列表"""
        return list(self._providers)

    def get_provider(self, provider_id: str) -> ProviderConfig:
        """获取 provider 配置（available 为当前状态）

        Raises:
            KeyError: 未知 provider
        """
        cfg = self._providers[provider_id]
        return cfg.model_copy(update={"available": self.is_available(provider_id)})

    def list_providers(self) -> list[ProviderConfig]:
        return [self.get_provider(pid) for pid in self._providers]

    def source_label(self, provider_id: str) -> str:
        """provider 在降级链中的 source label（primary / secondary / ...）"""
        return source_label_for_rank(self.provider_ids().index(provider_id))

    def endpoint_for(self, provider_id: str) -> str:
        """实际调用端点：proxy 模式改写为 <proxy_url>/<provider_id>"""
        cfg = self._providers[provider_id]
        if self.proxy.enabled:
            return f"{self.proxy.url.rstrip('/')}/{provider_id}"
        return cfg.endpoint

    def auth_headers(self, provider_id: str) -> dict[str, str]:
        """鉴权头：proxy 模式下密钥由代理注入，仅携带内部令牌"""
        if self.proxy.enabled:
            token = self.proxy.internal_token.get_secret_value()
            return {PROXY_TOKEN_HEADER: token} if token else {}
        key = self._providers[provider_id].api_key.get_secret_value()
        if not key:
            return {}
        return {"Authorization": f"Bearer {key}"}

    def _statically_available(self, cfg: ProviderConfig) -> bool:
        if not cfg.enabled:
            return False
        if self.proxy.enabled:
            return True
        return bool(cfg.api_key.get_secret_value())

    def register_probe(self, provider_id: str, probe: AvailabilityProbe) -> None:
        """注册 provider 的可用性探测函数（如 ProviderClient.health_check）"""
        if provider_id not in self._providers:
            raise KeyError(provider_id)
        self._probes[provider_id] = probe

    def is_available(self, provider_id: str) -> bool:
        return self._availability.get(provider_id, False)

    def set_availability(self, provider_id: str, available: bool) -> None:
        """手动覆盖可用性（运维开关 / 测试）"""
        if provider_id not in self._providers:
            raise KeyError(provider_id)
        self._availability[provider_id] = available

    def get_availability(self) -> dict[str, bool]:
        """当前可用性快照（不触发探测），template 恒为 True"""
        return {**self._availability, TEMPLATE_AVAILABILITY_KEY: True}

    async def check_availability(self) -> dict[str, bool]:
        """刷新并返回所有 provider 的可用性

        静态条件不满足的 provider 直接判定不可用；
        其余若注册了探测函数则并发探测，探测异常视为不可用。
        """
        pending: dict[str, AvailabilityProbe] = {}
        for pid, cfg in self._providers.items():
            if not self._statically_available(cfg):
                self._availability[pid] = False
            elif pid in self._probes:
                pending[pid] = self._probes[pid]
            else:
                self._availability[pid] = True

        if pending:
            outcomes = await asyncio.gather(
                *(probe() for probe in pending.values()),
                return_exceptions=True,
            )
            for pid, outcome in zip(pending, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    log.warning(
                        "availability_probe_failed",
                        provider=pid,
                        error=str(outcome),
                        error_type=type(outcome).__name__,
                    )
                    self._availability[pid] = False
                else:
                    self._availability[pid] = bool(outcome)

        availability = self.get_availability()
        log.info("availability_refreshed", **availability)
        return availability
