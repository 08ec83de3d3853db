"""ProviderClient -- 单个 remote provider 的 HTTP 调用封装

每个 provider 一个实例：OpenAI 兼容的 JSON POST，
单次尝试受超时约束，失败后按 BackoffPolicy 指数退避重试，
耗尽后抛出最后一次的 NetworkError / ProviderError，由 FallbackOrchestrator 降级。
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from reviewgen.core.models import GenerationRequest

from .backoff import BackoffPolicy
from .config import ConfigManager
from .cost import CostTracker
from .exceptions import NetworkError, ProviderError
from .models import RawProviderResult
from .prompt import build_messages

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

# 限流状态码：不在同一退避预算内重试
RATE_LIMITED_STATUS = 429


def _extract_content(data: Any) -> str:
    """从 {choices:[{message:{content}}]} 提取文本，缺失或为空返回空串"""
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    message = first.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if not isinstance(content, str):
        return ""
    return content.strip()


class ProviderClient:
    """Remote provider 客户端

    鉴权方式（proxy 注入 / 直连 Bearer）由 ConfigManager 决定，对本类透明。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        provider_id: str,
        http_client: httpx.AsyncClient | None = None,
        backoff: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """初始化 provider 客户端

        Args:
            config_manager: 配置管理器
            provider_id: provider id（必须已在配置中）
            http_client: 共享的 httpx.AsyncClient，None 时自建并在 aclose() 释放
            backoff: 退避策略，None 时按 provider 配置构造
            sleep: 退避等待函数（测试可替换）
        """
        self._config_manager = config_manager
        self._config = config_manager.get_provider(provider_id)
        self._provider_id = provider_id
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient()
        self._backoff = backoff or config_manager.backoff_for(provider_id)
        self._sleep = sleep

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def label(self) -> str:
        return self._config_manager.source_label(self._provider_id)

    @property
    def model_id(self) -> str:
        return self._config.model_id

    @property
    def backoff(self) -> BackoffPolicy:
        return self._backoff

    def is_available(self) -> bool:
        """当前可用性（由 ConfigManager 探测刷新）"""
        return self._config_manager.is_available(self._provider_id)

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        """构造 provider 请求体 {model, messages, temperature, max_tokens}"""
        return {
            "model": self._config.model_id,
            "messages": build_messages(
                request,
                use_system_prompt=self._config.use_system_prompt,
                user_prefix=self._config.user_prefix,
            ),
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
        }

    async def call(self, request: GenerationRequest) -> RawProviderResult:
        """执行一次生成调用（含重试）

        Args:
            request: 生成请求

        Returns:
            RawProviderResult

        Raises:
            NetworkError: 最后一次尝试连接失败或超时
            ProviderError: 最后一次尝试返回非 2xx 或响应体不合法；429 不重试
        """
        endpoint = self._config_manager.endpoint_for(self._provider_id)
        headers = {
            "Content-Type": "application/json",
            **self._config_manager.auth_headers(self._provider_id),
        }
        payload = self.build_payload(request)
        start_time = time.monotonic()
        attempt = 0

        while True:
            try:
                data, text = await asyncio.wait_for(
                    self._post_once(endpoint, headers, payload),
                    timeout=self._config.timeout_s,
                )
            except TimeoutError as e:
                error: ProviderError = NetworkError(self._provider_id, endpoint, e)
            except ProviderError as e:
                error = e
            else:
                usage, estimated, cost_usd = CostTracker.account(
                    data, text, self._config.cost_per_1k_tokens
                )
                duration_ms = int((time.monotonic() - start_time) * 1000)
                model_name = data.get("model") or self._config.model_id
                log.info(
                    "provider_call_completed",
                    provider=self._provider_id,
                    model=model_name,
                    attempts=attempt + 1,
                    duration_ms=duration_ms,
                    total_tokens=usage.total_tokens,
                    tokens_estimated=estimated,
                    cost_usd=cost_usd,
                )
                return RawProviderResult(
                    text=text,
                    provider_id=self._provider_id,
                    model_id=model_name,
                    duration_ms=duration_ms,
                    attempts=attempt + 1,
                    token_usage=usage,
                    tokens_estimated=estimated,
                    cost_usd=cost_usd,
                )

            log.warning(
                "provider_attempt_failed",
                provider=self._provider_id,
                attempt=attempt,
                error=str(error),
                error_type=type(error).__name__,
            )
            # 429 不重试，直接交给下一阶段
            if error.status_code == RATE_LIMITED_STATUS:
                break
            if not self._backoff.should_retry(attempt):
                break
            await self._sleep(self._backoff.delay_for(attempt))
            attempt += 1

        error.attempts = attempt + 1
        log.error(
            "provider_retries_exhausted",
            provider=self._provider_id,
            attempts=error.attempts,
            status_code=error.status_code,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        raise error

    async def _post_once(
        self,
        endpoint: str,
        headers: dict[str, str],
        payload: dict[str, Any],
    ) -> tuple[dict[str, Any], str]:
        """单次 POST 尝试

        Returns:
            (响应 JSON, 提取出的文本)
        """
        try:
            response = await self._http_client.post(
                endpoint,
                json=payload,
                headers=headers,
                timeout=self._config.timeout_s,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(self._provider_id, endpoint, e) from e
        except httpx.TransportError as e:
            raise NetworkError(self._provider_id, endpoint, e) from e
        except httpx.RequestError as e:
            # 解码失败、重定向过多等
            raise ProviderError(
                f"Provider 响应无法读取: {self._provider_id} -- {type(e).__name__}: {e}",
                provider_id=self._provider_id,
            ) from e

        if not response.is_success:
            raise ProviderError(
                f"Provider 返回错误状态: {self._provider_id} HTTP {response.status_code}",
                provider_id=self._provider_id,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Provider 响应不是合法 JSON: {self._provider_id}",
                provider_id=self._provider_id,
                status_code=response.status_code,
            ) from e

        text = _extract_content(data)
        if not text:
            raise ProviderError(
                f"Provider 响应缺少有效 choices: {self._provider_id}",
                provider_id=self._provider_id,
                status_code=response.status_code,
            )
        return data, text

    async def health_check(self) -> bool:
        """可用性探测

        proxy 模式: GET <proxy_url>/health?provider=<id>，要求 200 且服务端已配置密钥。
        直连模式: 仅检查本地是否持有密钥（不发起网络请求）。

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        proxy = self._config_manager.proxy
        if not proxy.enabled:
            return bool(self._config.api_key.get_secret_value())

        url = f"{proxy.url.rstrip('/')}/health"
        try:
            resp = await self._http_client.get(
                url,
                params={"provider": self._provider_id},
                timeout=HEALTH_CHECK_TIMEOUT_S,
            )
            if resp.status_code != 200:
                return False
            body = resp.json()
            provider_status = body.get(self._provider_id) or {}
            return bool(provider_status.get("configured", False))
        except Exception as e:
            log.debug("health_check_failed", url=url, provider=self._provider_id, error=str(e))
            return False

    async def aclose(self) -> None:
        """释放自建的 HTTP 客户端"""
        if self._owns_http_client:
            await self._http_client.aclose()
