"""LLMProxyService -- 同源 provider 代理

POST /api/llm-proxy/{provider} 的业务逻辑：
按客户端限流、夹紧 max_tokens / temperature，
在服务端注入密钥后经 litellm.acompletion() 转发，返回 OpenAI 兼容响应体。
"""

import os
import secrets
import time
from collections import deque
from collections.abc import Callable
from typing import Any

import structlog
from litellm import acompletion
from pydantic import BaseModel, ConfigDict, Field

log = structlog.get_logger()

# 上游调用超时（秒）；客户端侧另有更短的单次尝试超时
UPSTREAM_TIMEOUT_S = 10


class ProxyProviderSpec(BaseModel):
    """代理支持的 provider 描述"""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    default_model: str
    key_env: str
    max_tokens_cap: int
    default_max_tokens: int

    @property
    def api_key(self) -> str:
        return os.environ.get(self.key_env, "")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


PROXY_PROVIDERS: dict[str, ProxyProviderSpec] = {
    "openai": ProxyProviderSpec(
        provider_id="openai",
        default_model="gpt-4o-mini",
        key_env="OPENAI_API_KEY",
        max_tokens_cap=500,
        default_max_tokens=300,
    ),
    "groq": ProxyProviderSpec(
        provider_id="groq",
        default_model="mixtral-8x7b-32768",
        key_env="GROQ_API_KEY",
        max_tokens_cap=400,
        default_max_tokens=250,
    ),
}

DEFAULT_TEMPERATURE = 0.7


class ChatMessage(BaseModel):
    role: str = Field(pattern=r"^(system|user|assistant)$")
    content: str


class ProxyChatRequest(BaseModel):
    """代理请求体（OpenAI chat completions 子集）"""

    model: str | None = None
    messages: list[ChatMessage] = Field(min_length=1)
    temperature: float | None = None
    max_tokens: int | None = None


class ProxyError(Exception):
    """代理层错误 -- 携带 HTTP 状态码与错误码"""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class SlidingWindowRateLimiter:
    """按客户端标识的滑动窗口限流

    客户端表超过 max_clients 时清理窗口外已无请求的客户端。
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_s: float = 60.0,
        max_clients: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window_s = window_s
        self._max_clients = max_clients
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    @property
    def client_count(self) -> int:
        return len(self._hits)

    def allow(self, client_id: str) -> bool:
        now = self._clock()
        window = self._hits.setdefault(client_id, deque())
        while window and now - window[0] >= self._window_s:
            window.popleft()
        if len(window) >= self._max_requests:
            return False
        window.append(now)
        if len(self._hits) > self._max_clients:
            self._purge(now)
        return True

    def retry_after(self, client_id: str) -> int:
        """距离窗口内最早一次请求过期的秒数"""
        window = self._hits.get(client_id)
        if not window:
            return 0
        return max(1, int(self._window_s - (self._clock() - window[0])) + 1)

    def _purge(self, now: float) -> None:
        stale = [
            cid for cid, hits in self._hits.items()
            if not hits or now - hits[-1] >= self._window_s
        ]
        for cid in stale:
            del self._hits[cid]
        log.debug("rate_limiter_purged", purged=len(stale), remaining=len(self._hits))


def clamp_temperature(value: float | None) -> float:
    if value is None:
        return DEFAULT_TEMPERATURE
    return min(max(value, 0.0), 1.0)


def clamp_max_tokens(value: int | None, spec: ProxyProviderSpec) -> int:
    if value is None or value <= 0:
        return spec.default_max_tokens
    return min(value, spec.max_tokens_cap)


def _usage_dict(usage: Any) -> dict[str, int] | None:
    if usage is None:
        return None
    try:
        return {
            "prompt_tokens": int(getattr(usage, "prompt_tokens", 0) or 0),
            "completion_tokens": int(getattr(usage, "completion_tokens", 0) or 0),
            "total_tokens": int(getattr(usage, "total_tokens", 0) or 0),
        }
    except (TypeError, ValueError):
        return None


class LLMProxyService:
    """同源代理服务"""

    def __init__(
        self,
        providers: dict[str, ProxyProviderSpec] | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        timeout_s: float = UPSTREAM_TIMEOUT_S,
        internal_token: str = "",
    ) -> None:
        """初始化代理服务

        Args:
            providers: 支持的 provider，默认 PROXY_PROVIDERS
            rate_limiter: 外部客户端限流器
            timeout_s: 上游调用超时（秒）
            internal_token: 应用自身 ProviderClient 携带的令牌，为空时不信任任何调用方
        """
        self._providers = providers or PROXY_PROVIDERS
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self._timeout_s = timeout_s
        self._internal_token = internal_token

    @property
    def rate_limiter(self) -> SlidingWindowRateLimiter:
        return self._rate_limiter

    def is_trusted(self, token: str | None) -> bool:
        """是否为应用自身的内部调用"""
        if not self._internal_token or not token:
            return False
        return secrets.compare_digest(token.encode(), self._internal_token.encode())

    def health(self, provider: str | None = None) -> dict[str, Any]:
        """各 provider 的密钥配置状态（不调用上游）"""
        specs = self._providers
        if provider is not None:
            specs = {k: v for k, v in specs.items() if k == provider}
        body: dict[str, Any] = {"status": "healthy"}
        for pid, spec in specs.items():
            body[pid] = {
                "configured": spec.configured,
                "status": "available" if spec.configured else "not_configured",
            }
        return body

    def get_spec(self, provider: str) -> ProxyProviderSpec:
        spec = self._providers.get(provider)
        if spec is None:
            raise ProxyError(400, "UNKNOWN_PROVIDER", f"Unknown provider: {provider}")
        return spec

    async def forward(
        self,
        provider: str,
        body: ProxyChatRequest,
        client_id: str,
        trusted: bool = False,
    ) -> dict[str, Any]:
        """转发 chat completion 请求

        trusted 为 True（内部调用）时不计入按客户端限流，
        终端用户的频率由 /api/reviews 入口限制。

        Raises:
            ProxyError: 未知 provider(400) / 限流(429) / 未配置密钥(503) / 上游失败(502)
        """
        spec = self.get_spec(provider)

        if not trusted and not self._rate_limiter.allow(client_id):
            log.warning("llm_proxy_rate_limited", provider=provider, client_id=client_id)
            raise ProxyError(429, "RATE_LIMITED", "Too many requests")

        if not spec.configured:
            raise ProxyError(
                503,
                "PROVIDER_NOT_CONFIGURED",
                f"Provider {provider} is not configured",
            )

        model = body.model or spec.default_model
        temperature = clamp_temperature(body.temperature)
        max_tokens = clamp_max_tokens(body.max_tokens, spec)
        start_time = time.monotonic()

        try:
            response = await acompletion(
                model=f"{provider}/{model}",
                messages=[m.model_dump() for m in body.messages],
                temperature=temperature,
                max_tokens=max_tokens,
                api_key=spec.api_key,
                timeout=self._timeout_s,
            )
        except Exception as e:
            log.error(
                "llm_proxy_upstream_failed",
                provider=provider,
                model=model,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
            raise ProxyError(502, "UPSTREAM_ERROR", f"Upstream {provider} call failed") from e

        choices = []
        for index, choice in enumerate(response.choices or []):
            choices.append(
                {
                    "index": index,
                    "message": {
                        "role": "assistant",
                        "content": choice.message.content or "",
                    },
                    "finish_reason": getattr(choice, "finish_reason", None),
                }
            )

        payload: dict[str, Any] = {
            "model": getattr(response, "model", None) or model,
            "choices": choices,
        }
        usage = _usage_dict(getattr(response, "usage", None))
        if usage is not None:
            payload["usage"] = usage

        log.info(
            "llm_proxy_forwarded",
            provider=provider,
            model=payload["model"],
            max_tokens=max_tokens,
            temperature=temperature,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        return payload
