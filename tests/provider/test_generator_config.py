"""GeneratorSettings / ConfigManager 测试 -- 环境变量映射、代理路由、可用性"""

from unittest.mock import AsyncMock

import pytest
from pydantic import SecretStr

from reviewgen.provider import ConfigManager, load_generator_settings
from reviewgen.provider.config import PROXY_TOKEN_HEADER


class TestLoadGeneratorSettings:
    def test_defaults(self, monkeypatch):
        """无环境变量时使用默认 provider 链"""
        for key in ("REVIEWGEN_USE_PROXY", "OPENAI_API_KEY", "GROQ_API_KEY"):
            monkeypatch.delenv(key, raising=False)
        settings = load_generator_settings()

        openai, groq = settings.providers
        assert (openai.provider_id, openai.model_id) == ("openai", "gpt-4o-mini")
        assert (openai.timeout_ms, openai.max_retries) == (3000, 2)
        assert openai.cost_per_1k_tokens == 0.00015
        assert (groq.provider_id, groq.model_id) == ("groq", "mixtral-8x7b-32768")
        assert (groq.timeout_ms, groq.max_retries) == (1000, 1)
        assert settings.proxy.enabled is True
        assert settings.cache.ttl_s == 3600
        assert settings.cache.max_size == 100
        assert settings.monitoring.thresholds.daily_cost_usd == 1.0
        assert settings.ab_testing.enabled is False

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("REVIEWGEN_USE_PROXY", "false")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("REVIEWGEN_OPENAI_TIMEOUT_MS", "1500")
        monkeypatch.setenv("REVIEWGEN_GROQ_ENABLED", "false")
        monkeypatch.setenv("REVIEWGEN_CACHE_MAX_SIZE", "10")
        monkeypatch.setenv("REVIEWGEN_ALERT_DAILY_COST_USD", "2.5")
        monkeypatch.setenv("REVIEWGEN_AB_ENABLED", "true")

        settings = load_generator_settings()

        openai, groq = settings.providers
        assert settings.proxy.enabled is False
        assert openai.api_key.get_secret_value() == "sk-test"
        assert openai.timeout_ms == 1500
        assert groq.enabled is False
        assert settings.cache.max_size == 10
        assert settings.monitoring.thresholds.daily_cost_usd == 2.5
        assert settings.ab_testing.enabled is True

    def test_invalid_number_keeps_default(self, monkeypatch):
        """非法数值不阻塞启动，保留默认值"""
        monkeypatch.setenv("REVIEWGEN_OPENAI_MAX_RETRIES", "many")
        settings = load_generator_settings()
        assert settings.providers[0].max_retries == 2


class TestConfigManagerRouting:
    def test_proxy_rewrites_endpoint(self, make_settings):
        """proxy 模式：端点改写为 <proxy_url>/<provider>，不带鉴权头"""
        manager = ConfigManager(make_settings(proxy_enabled=True))
        assert manager.endpoint_for("openai") == "http://proxy.test/api/llm-proxy/openai"
        assert manager.auth_headers("openai") == {}

    def test_proxy_sends_internal_token(self, make_settings):
        """proxy 模式：配置了内部令牌时随请求携带"""
        manager = ConfigManager(make_settings(proxy_token="tok-123"))
        assert manager.auth_headers("groq") == {PROXY_TOKEN_HEADER: "tok-123"}

        direct = ConfigManager(make_settings(proxy_enabled=False, proxy_token="tok-123"))
        assert PROXY_TOKEN_HEADER not in direct.auth_headers("groq")

    def test_direct_mode_uses_bearer(self, make_settings):
        settings = make_settings(
            proxy_enabled=False,
            provider_overrides={"openai": {"api_key": SecretStr("sk-direct")}},
        )
        manager = ConfigManager(settings)
        assert manager.endpoint_for("openai") == "https://api.openai.com/v1/chat/completions"
        assert manager.auth_headers("openai") == {"Authorization": "Bearer sk-direct"}

    def test_priority_order_and_labels(self, make_settings):
        settings = make_settings(
            provider_overrides={"openai": {"priority": 5}, "groq": {"priority": 1}}
        )
        manager = ConfigManager(settings)
        assert manager.provider_ids() == ["groq", "openai"]
        assert manager.source_label("groq") == "primary"
        assert manager.source_label("openai") == "secondary"

    def test_backoff_follows_provider_retries(self, make_settings):
        manager = ConfigManager(make_settings())
        assert manager.backoff_for("openai").max_attempts == 3
        assert manager.backoff_for("groq").max_attempts == 2
        assert manager.backoff_for("openai").base_delay_s == 0


class TestConfigManagerAvailability:
    def test_static_availability(self, make_settings):
        """直连模式下没有密钥的 provider 不可用；template 恒可用"""
        settings = make_settings(
            proxy_enabled=False,
            provider_overrides={"openai": {"api_key": SecretStr("sk")}},
        )
        manager = ConfigManager(settings)
        assert manager.get_availability() == {"openai": True, "groq": False, "template": True}

    def test_disabled_provider_unavailable(self, make_settings):
        manager = ConfigManager(make_settings(provider_overrides={"groq": {"enabled": False}}))
        assert manager.is_available("groq") is False
        assert manager.get_provider("groq").available is False

    async def test_check_availability_runs_probes(self, make_settings):
        """探测函数结果写回可用性，探测异常视为不可用"""
        manager = ConfigManager(make_settings())
        manager.register_probe("openai", AsyncMock(return_value=False))
        manager.register_probe("groq", AsyncMock(side_effect=RuntimeError("boom")))

        availability = await manager.check_availability()

        assert availability == {"openai": False, "groq": False, "template": True}
        assert manager.is_available("openai") is False

    async def test_check_availability_recovers(self, make_settings):
        manager = ConfigManager(make_settings())
        manager.set_availability("openai", False)
        manager.register_probe("openai", AsyncMock(return_value=True))
        availability = await manager.check_availability()
        assert availability["openai"] is True

    def test_unknown_provider(self, make_settings):
        manager = ConfigManager(make_settings())
        with pytest.raises(KeyError):
            manager.register_probe("anthropic", AsyncMock())
        with pytest.raises(KeyError):
            manager.set_availability("anthropic", True)
