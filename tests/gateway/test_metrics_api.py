"""指标 / provider / 缓存维护路由测试"""

from httpx import AsyncClient

GRAND_PLAZA = {"hotelName": "Grand Plaza", "rating": 5, "highlights": ["location", "service"]}


class TestMetricsRoutes:
    async def test_summary_after_generation(self, client: AsyncClient):
        await client.post("/api/reviews", json=GRAND_PLAZA)
        await client.post("/api/reviews", json=GRAND_PLAZA)

        resp = await client.get("/api/metrics")
        assert resp.status_code == 200
        data = resp.json()
        assert data["requests"]["total"] == 2
        assert data["success_rate"] == 1.0
        assert data["cache_hit_rate"] == 0.5
        assert data["providers"]["openai"]["success"] == 1
        assert data["availability"]["template"] is True
        assert data["ab_testing"] is None
        assert set(data["cost"]) == {"today_usd", "this_month_usd", "total_usd"}

    async def test_snapshot(self, client: AsyncClient, upstream):
        upstream.failing = {"openai", "groq"}
        await client.post("/api/reviews", json=GRAND_PLAZA)

        data = (await client.get("/api/metrics/snapshot")).json()
        assert data["fallback"]["template"] == 1
        assert data["requests"]["errors"] == 1
        assert data["providers"]["openai"]["errors"] == 1
        assert data["thresholds"]["error_rate"] == 0.1


class TestProviderRoutes:
    async def test_list_providers_without_secrets(self, client: AsyncClient):
        data = (await client.get("/api/providers")).json()
        assert data["proxy_enabled"] is True
        providers = data["providers"]
        assert [p["provider_id"] for p in providers] == ["openai", "groq"]
        assert [p["source"] for p in providers] == ["primary", "secondary"]
        assert providers[0]["endpoint"] == "http://proxy.test/api/llm-proxy/openai"
        assert all("api_key" not in p for p in providers)

    async def test_availability_cached_view(self, client: AsyncClient):
        data = (await client.get("/api/providers/availability")).json()
        assert data == {"openai": True, "groq": True, "template": True}

    async def test_availability_refresh_probes_proxy(self, client: AsyncClient, upstream):
        upstream.unconfigured = {"groq"}
        data = (await client.get("/api/providers/availability", params={"refresh": True})).json()
        assert data == {"openai": True, "groq": False, "template": True}

        # 刷新后 groq 被跳过，openai 失败时直接落到模板
        upstream.failing = {"openai"}
        review = (await client.post("/api/reviews", json=GRAND_PLAZA)).json()
        assert review["source"] == "template"
        assert upstream.calls["groq"] == 0


class TestCacheRoutes:
    async def test_stats_and_clear(self, client: AsyncClient, upstream):
        await client.post("/api/reviews", json=GRAND_PLAZA)

        stats = (await client.get("/api/cache/stats")).json()
        assert stats["enabled"] is True
        assert stats["total"] == 1
        assert stats["valid"] == 1
        assert stats["max_size"] == 100

        cleared = (await client.post("/api/cache/clear")).json()
        assert cleared["cleared"] == 1
        assert cleared["stats"]["total"] == 0

        again = (await client.post("/api/reviews", json=GRAND_PLAZA)).json()
        assert again["source"] == "primary"
        assert upstream.calls["openai"] == 2
