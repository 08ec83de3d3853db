"""reviewgen Provider -- 生成编排层

公开接口导出：ProviderClient / CacheLayer / MetricsManager /
TemplateEngine / FallbackOrchestrator 及配置、异常。
"""

from .ab_testing import ABAssigner
from .backoff import BackoffPolicy
from .cache import CacheEntry, CacheLayer, InFlightRegistry

# 核心组件
from .client import ProviderClient

# 配置
from .config import (
    ConfigManager,
    GeneratorSettings,
    ProviderConfig,
    ProxyConfig,
    default_providers,
    load_generator_settings,
)
from .cost import CostTracker

# 异常
from .exceptions import (
    CacheUnavailableError,
    GenerationError,
    MetricsPersistError,
    NetworkError,
    ProviderError,
    TemplateEngineError,
)
from .fallback import FallbackOrchestrator
from .metrics import MetricsManager
from .models import RawProviderResult, TokenUsage
from .prompt import build_messages, build_prompt
from .template_engine import TemplateEngine

__all__ = [
    "ABAssigner",
    "BackoffPolicy",
    "CacheEntry",
    "CacheLayer",
    "InFlightRegistry",
    "ProviderClient",
    "ConfigManager",
    "GeneratorSettings",
    "ProviderConfig",
    "ProxyConfig",
    "default_providers",
    "load_generator_settings",
    "CostTracker",
    "CacheUnavailableError",
    "GenerationError",
    "MetricsPersistError",
    "NetworkError",
    "ProviderError",
    "TemplateEngineError",
    "FallbackOrchestrator",
    "MetricsManager",
    "RawProviderResult",
    "TokenUsage",
    "build_messages",
    "build_prompt",
    "TemplateEngine",
]
