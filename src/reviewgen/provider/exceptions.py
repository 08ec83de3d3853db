"""异常体系

Provider 级错误在 ProviderClient 内重试，耗尽后交由 FallbackOrchestrator 降级，
不会暴露给调用方。唯一可能到达调用方的是 TemplateEngineError（程序缺陷）。
"""


class GenerationError(Exception):
    """生成编排层基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试或降级恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class ProviderError(GenerationError):
    """Provider 返回非 2xx、响应体格式错误或 choices 为空"""

    def __init__(
        self,
        message: str,
        provider_id: str = "",
        status_code: int | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message, recoverable=recoverable)
        self.provider_id = provider_id
        self.status_code = status_code
        # 由 ProviderClient 在重试耗尽时回填
        self.attempts = 0


class NetworkError(ProviderError):
    """连接失败或单次尝试超时"""

    def __init__(
        self,
        provider_id: str,
        endpoint: str,
        original_error: BaseException,
    ) -> None:
        super().__init__(
            f"Provider 不可达: {provider_id} ({endpoint}) -- "
            f"{type(original_error).__name__}: {original_error}",
            provider_id=provider_id,
        )
        self.endpoint = endpoint
        self.original_error = original_error


class CacheUnavailableError(GenerationError):
    """缓存不可用 -- 降级为无缓存，非致命"""

    def __init__(self, message: str = "缓存不可用") -> None:
        super().__init__(message, recoverable=True)


class MetricsPersistError(GenerationError):
    """指标持久化失败 -- 记录日志后继续，非致命"""

    def __init__(self, message: str = "指标持久化失败") -> None:
        super().__init__(message, recoverable=True)


class TemplateEngineError(GenerationError):
    """TemplateEngine 缺陷 -- 模板兜底不应失败，属于程序 bug"""

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)
