"""全局 pytest 配置 -- 临时 SQLite、KV 存储、请求与配置 fixture"""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import aiosqlite
import httpx
import pytest
import pytest_asyncio
from pydantic import SecretStr

from reviewgen.core.models import AlertThresholds, CachePolicy, GenerationRequest, MonitoringPolicy
from reviewgen.core.store import InMemoryKeyValueStore
from reviewgen.provider import GeneratorSettings, ProxyConfig, default_providers

TEST_PROXY_URL = "http://proxy.test/api/llm-proxy"


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from reviewgen.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest.fixture
def memory_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def grand_plaza() -> GenerationRequest:
    """标准场景请求：Grand Plaza 5 星，亮点 location + service"""
    return GenerationRequest(
        hotel_name="Grand Plaza",
        rating=5,
        highlights=["location", "service"],
    )


@pytest.fixture
def make_settings() -> Callable[..., GeneratorSettings]:
    """构造测试用 GeneratorSettings（退避为 0，默认 proxy 模式）"""

    def _make(
        proxy_enabled: bool = True,
        proxy_token: str = "",
        cache: CachePolicy | None = None,
        thresholds: AlertThresholds | None = None,
        provider_overrides: dict[str, dict[str, Any]] | None = None,
        **extra: Any,
    ) -> GeneratorSettings:
        overrides = provider_overrides or {}
        providers = [
            p.model_copy(update=overrides.get(p.provider_id, {}))
            for p in default_providers()
        ]
        fields: dict[str, Any] = {
            "providers": providers,
            "proxy": ProxyConfig(
                enabled=proxy_enabled,
                url=TEST_PROXY_URL,
                internal_token=SecretStr(proxy_token),
            ),
            "cache": cache or CachePolicy(),
            "monitoring": MonitoringPolicy(thresholds=thresholds or AlertThresholds()),
            "backoff_base_ms": 0,
            "backoff_jitter": 0.0,
        }
        fields.update(extra)
        return GeneratorSettings(**fields)

    return _make


def chat_response(
    text: str = "Grand Plaza was a wonderful place to stay.",
    total_tokens: int | None = 42,
    model: str = "gpt-4o-mini",
    status_code: int = 200,
) -> httpx.Response:
    """构造 OpenAI 兼容的 chat completion 响应"""
    body: dict[str, Any] = {
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}}],
    }
    if total_tokens is not None:
        body["usage"] = {
            "prompt_tokens": total_tokens // 2,
            "completion_tokens": total_tokens - total_tokens // 2,
            "total_tokens": total_tokens,
        }
    return httpx.Response(status_code, json=body)


@pytest.fixture
def make_chat_response() -> Callable[..., httpx.Response]:
    return chat_response
