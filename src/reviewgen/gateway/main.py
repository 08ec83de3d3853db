"""FastAPI 应用主文件

app 创建 + lifespan 管理：
KV 存储初始化 -> 事件总线 -> 共享 httpx 客户端 -> ReviewService 组合根
-> 指标恢复 -> 后台任务；关闭时逆序清理并落盘指标。
"""

import secrets
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from pydantic import SecretStr

from reviewgen import __version__
from reviewgen.core import EventBus
from reviewgen.core.config import get_db_path, get_kv_backend
from reviewgen.core.store import create_kv_store
from reviewgen.provider import GeneratorSettings, MetricsPersistError, load_generator_settings

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .routes import alerts, cache, health, llm_proxy, metrics, providers, reviews
from .services.llm_proxy import LLMProxyService
from .services.review_service import build_review_service

log = structlog.get_logger()


def ensure_proxy_token(settings: GeneratorSettings) -> GeneratorSettings:
    """proxy 模式下未配置 REVIEWGEN_PROXY_TOKEN 时生成进程内随机令牌"""
    if not settings.proxy.enabled or settings.proxy.internal_token.get_secret_value():
        return settings
    proxy = settings.proxy.model_copy(
        update={"internal_token": SecretStr(secrets.token_urlsafe(32))}
    )
    return settings.model_copy(update={"proxy": proxy})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    backend = get_kv_backend()
    kv_store = await create_kv_store(backend, get_db_path())
    app.state.kv_store = kv_store

    event_bus = EventBus()
    app.state.event_bus = event_bus

    http_client = httpx.AsyncClient()
    app.state.http_client = http_client

    settings = ensure_proxy_token(load_generator_settings())
    service = build_review_service(
        settings,
        kv_store=kv_store,
        http_client=http_client,
        event_bus=event_bus,
    )
    await service.metrics.load()
    service.start_background_tasks()
    app.state.review_service = service
    app.state.llm_proxy = LLMProxyService(
        internal_token=settings.proxy.internal_token.get_secret_value(),
    )

    log.info(
        "gateway_started",
        kv_backend=backend,
        proxy_enabled=settings.proxy.enabled,
        proxy_url=settings.proxy.url,
    )

    yield

    await service.aclose()
    try:
        await service.metrics.flush()
    except MetricsPersistError as e:
        log.warning("metrics_persist_failed", error=str(e), event_type="shutdown")
    await http_client.aclose()
    await kv_store.close()
    log.info("gateway_stopped")


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="Hotel Review Generator",
        version=__version__,
        description="酒店点评生成编排层 API",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire()

    app.include_router(reviews.router, tags=["reviews"])
    app.include_router(metrics.router, tags=["metrics"])
    app.include_router(providers.router, tags=["providers"])
    app.include_router(cache.router, tags=["cache"])
    app.include_router(alerts.router, tags=["alerts"])
    app.include_router(llm_proxy.router, tags=["llm-proxy"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
