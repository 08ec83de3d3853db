"""gateway 测试配置 -- 手动装配 app.state（绕过 lifespan）+ 模拟上游 provider"""

import os
from collections import Counter
from collections.abc import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from reviewgen.core import EventBus


class FakeUpstream:
    """模拟 proxy 后的 provider：chat completion 与 /health 探测"""

    def __init__(self, make_chat_response: Callable[..., httpx.Response]) -> None:
        self._make_chat_response = make_chat_response
        self.calls: Counter[str] = Counter()
        self.failing: set[str] = set()
        self.unconfigured: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.rsplit("/", 1)[-1]
        if name == "health":
            provider = request.url.params.get("provider", "")
            return httpx.Response(
                200,
                json={
                    "status": "healthy",
                    provider: {"configured": provider not in self.unconfigured},
                },
            )
        self.calls[name] += 1
        if name in self.failing:
            return httpx.Response(503)
        return self._make_chat_response()


@pytest.fixture
def upstream(make_chat_response) -> FakeUpstream:
    return FakeUpstream(make_chat_response)


@pytest_asyncio.fixture
async def build_app(make_settings, upstream, memory_store):
    """按给定配置装配测试 app，返回工厂函数"""
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from reviewgen.gateway.main import create_app
    from reviewgen.gateway.services.llm_proxy import LLMProxyService
    from reviewgen.gateway.services.review_service import build_review_service

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    services = []

    def _build(settings=None, **service_kwargs):
        app = create_app()
        event_bus = EventBus()
        service = build_review_service(
            settings or make_settings(),
            kv_store=memory_store,
            http_client=http_client,
            event_bus=event_bus,
            **service_kwargs,
        )
        services.append(service)
        app.state.kv_store = memory_store
        app.state.event_bus = event_bus
        app.state.http_client = http_client
        app.state.review_service = service
        app.state.llm_proxy = LLMProxyService()
        return app

    yield _build

    for service in services:
        await service.aclose()
    await http_client.aclose()
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def test_app(build_app):
    return build_app()


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac
