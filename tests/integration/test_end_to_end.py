"""端到端测试

1. 应用自身的 /api/llm-proxy 作为 provider：reviews -> 编排器 -> ProviderClient -> 代理路由 -> litellm(mock)
2. lifespan 完整启动/关闭：指标落盘 SQLite，重启后恢复
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from reviewgen.core import EventBus
from reviewgen.core.models import MetricEvent
from reviewgen.core.store import create_kv_store
from reviewgen.gateway.main import create_app, ensure_proxy_token, lifespan
from reviewgen.gateway.services.llm_proxy import LLMProxyService
from reviewgen.gateway.services.review_service import build_review_service
from reviewgen.provider import MetricsManager

ACOMPLETION = "reviewgen.gateway.services.llm_proxy.acompletion"
GRAND_PLAZA = {"hotelName": "Grand Plaza", "rating": 5, "highlights": ["location", "service"]}
SELF_TOKEN = "self-proxy-token"


def _completion(model: str = "gpt-4o-mini") -> MagicMock:
    choice = MagicMock()
    choice.message.content = "Grand Plaza was a wonderful place to stay."
    choice.finish_reason = "stop"
    response = MagicMock()
    response.choices = [choice]
    response.model = model
    response.usage = MagicMock(prompt_tokens=400, completion_tokens=600, total_tokens=1000)
    return response


@pytest_asyncio.fixture
async def self_proxied_app(tmp_path: Path, make_settings, monkeypatch):
    """provider 调用经 ASGITransport 回到同一个 app 的代理路由"""
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-openai-test")
    monkeypatch.setenv("GROQ_API_KEY", "gsk-groq-test")

    app = create_app()
    kv_store = await create_kv_store("sqlite", str(tmp_path / "sqlite" / "reviewgen.db"))
    http_client = httpx.AsyncClient(transport=ASGITransport(app=app))
    event_bus = EventBus()
    settings = make_settings(proxy_token=SELF_TOKEN)
    settings = settings.model_copy(
        update={"proxy": settings.proxy.model_copy(update={"url": "http://test/api/llm-proxy"})}
    )
    service = build_review_service(
        settings, kv_store=kv_store, http_client=http_client, event_bus=event_bus
    )
    app.state.kv_store = kv_store
    app.state.event_bus = event_bus
    app.state.review_service = service
    app.state.llm_proxy = LLMProxyService(internal_token=SELF_TOKEN)

    yield app

    await service.aclose()
    await http_client.aclose()
    await kv_store.close()


class TestSelfProxiedFlow:
    async def test_generation_through_own_proxy(self, self_proxied_app):
        with patch(ACOMPLETION, new_callable=AsyncMock) as mock_completion:
            mock_completion.return_value = _completion()
            async with AsyncClient(
                transport=ASGITransport(app=self_proxied_app), base_url="http://test"
            ) as ac:
                first = (await ac.post("/api/reviews", json=GRAND_PLAZA)).json()
                second = (await ac.post("/api/reviews", json=GRAND_PLAZA)).json()
                summary = (await ac.get("/api/metrics")).json()

        assert first["source"] == "primary"
        assert first["tokensUsed"] == 1000
        assert first["costUsd"] == pytest.approx(0.00015)
        assert second["source"] == "cache"
        assert mock_completion.await_count == 1
        assert mock_completion.call_args.kwargs["model"] == "openai/gpt-4o-mini"
        assert mock_completion.call_args.kwargs["api_key"] == "sk-openai-test"

        assert summary["requests"]["total"] == 2
        assert summary["cost"]["total_usd"] == pytest.approx(0.00015)

    async def test_upstream_outage_falls_through_chain(self, self_proxied_app):
        async def flaky(**kwargs):
            if kwargs["model"].startswith("openai/"):
                raise RuntimeError("openai down")
            return _completion(model="mixtral-8x7b-32768")

        with patch(ACOMPLETION, new_callable=AsyncMock) as mock_completion:
            mock_completion.side_effect = flaky
            async with AsyncClient(
                transport=ASGITransport(app=self_proxied_app), base_url="http://test"
            ) as ac:
                result = (await ac.post("/api/reviews", json=GRAND_PLAZA)).json()

        assert result["source"] == "secondary"
        assert result["provider"] == "groq"
        # openai: 3 次尝试均 502；groq: 1 次成功
        assert mock_completion.await_count == 4

    async def test_concurrent_requests_share_one_upstream_call(self, self_proxied_app):
        async def slow(**kwargs):
            await asyncio.sleep(0.05)
            return _completion()

        with patch(ACOMPLETION, new_callable=AsyncMock) as mock_completion:
            mock_completion.side_effect = slow
            async with AsyncClient(
                transport=ASGITransport(app=self_proxied_app), base_url="http://test"
            ) as ac:
                responses = await asyncio.gather(
                    *(ac.post("/api/reviews", json=GRAND_PLAZA) for _ in range(4))
                )

        texts = {r.json()["text"] for r in responses}
        assert len(texts) == 1
        assert mock_completion.await_count == 1

    async def test_availability_probes_own_proxy(self, self_proxied_app, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY")
        async with AsyncClient(
            transport=ASGITransport(app=self_proxied_app), base_url="http://test"
        ) as ac:
            data = (await ac.get("/api/providers/availability", params={"refresh": True})).json()
        assert data == {"openai": True, "groq": False, "template": True}

    async def test_own_calls_not_counted_by_proxy_limiter(self, self_proxied_app):
        """应用自身经代理的调用不占用浏览器限流配额"""
        with patch(ACOMPLETION, new_callable=AsyncMock) as mock_completion:
            mock_completion.return_value = _completion()
            async with AsyncClient(
                transport=ASGITransport(app=self_proxied_app), base_url="http://test"
            ) as ac:
                sources = []
                for i in range(15):
                    body = {**GRAND_PLAZA, "hotelName": f"Hotel {i}"}
                    sources.append((await ac.post("/api/reviews", json=body)).json()["source"])

        assert sources == ["primary"] * 15
        assert mock_completion.await_count == 15

    async def test_external_proxy_callers_still_limited(self, self_proxied_app):
        """不带内部令牌的调用方仍按 10 次 / 60 秒限流"""
        chat = {"messages": [{"role": "user", "content": "hi"}]}
        with patch(ACOMPLETION, new_callable=AsyncMock) as mock_completion:
            mock_completion.return_value = _completion()
            async with AsyncClient(
                transport=ASGITransport(app=self_proxied_app), base_url="http://test"
            ) as ac:
                statuses = [
                    (await ac.post("/api/llm-proxy/openai", json=chat)).status_code
                    for _ in range(11)
                ]
                forged = await ac.post(
                    "/api/llm-proxy/openai",
                    json=chat,
                    headers={"X-Reviewgen-Proxy-Token": "guess"},
                )

        assert statuses == [200] * 10 + [429]
        assert forged.status_code == 429


class TestProxyTokenWiring:
    def test_generated_only_when_missing(self, make_settings):
        generated = ensure_proxy_token(make_settings())
        assert len(generated.proxy.internal_token.get_secret_value()) >= 32

        configured = make_settings(proxy_token="from-env")
        assert ensure_proxy_token(configured) is configured

        direct = make_settings(proxy_enabled=False)
        assert ensure_proxy_token(direct).proxy.internal_token.get_secret_value() == ""

    async def test_lifespan_shares_token_with_proxy(self, monkeypatch):
        monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
        monkeypatch.setenv("REVIEWGEN_KV_BACKEND", "memory")
        monkeypatch.delenv("REVIEWGEN_USE_PROXY", raising=False)
        monkeypatch.delenv("REVIEWGEN_PROXY_TOKEN", raising=False)

        app = create_app()
        async with lifespan(app):
            proxy = app.state.review_service.config_manager.proxy
            token = proxy.internal_token.get_secret_value()
            assert token
            assert app.state.llm_proxy.is_trusted(token)
            assert not app.state.llm_proxy.is_trusted("other")


class TestLifespanPersistence:
    async def test_metrics_survive_restart(self, tmp_path: Path, monkeypatch):
        db_path = tmp_path / "sqlite" / "reviewgen.db"
        monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
        monkeypatch.setenv("REVIEWGEN_KV_BACKEND", "sqlite")
        monkeypatch.setenv("REVIEWGEN_DB_PATH", str(db_path))
        # 直连模式且无密钥：所有 remote provider 静态不可用，直接走模板
        monkeypatch.setenv("REVIEWGEN_USE_PROXY", "false")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("GROQ_API_KEY", raising=False)

        app = create_app()
        async with lifespan(app):
            assert app.state.review_service is not None
            async with AsyncClient(
                transport=ASGITransport(app=app), base_url="http://test"
            ) as ac:
                result = (await ac.post("/api/reviews", json=GRAND_PLAZA)).json()
            assert result["source"] == "template"

        assert db_path.exists()

        restarted = create_app()
        async with lifespan(restarted):
            snapshot = restarted.state.review_service.get_snapshot()
            assert snapshot.requests.total == 1
            assert snapshot.fallback.template == 1

    async def test_ledger_readable_by_fresh_manager(self, tmp_path: Path):
        store = await create_kv_store("sqlite", str(tmp_path / "kv.db"))
        try:
            writer = MetricsManager(store=store)
            await writer.record(
                MetricEvent.provider_success("openai", latency_ms=90, cost_usd=0.01)
            )

            reader = MetricsManager(store=store)
            await reader.load()
            assert reader.today_cost() == pytest.approx(0.01)
        finally:
            await store.close()
