"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

服务实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request

from reviewgen.core import EventBus
from reviewgen.core.store import KeyValueStore

from .services.llm_proxy import LLMProxyService
from .services.review_service import ReviewService


def get_review_service(request: Request) -> ReviewService:
    """从 app.state 获取 ReviewService 实例"""
    return request.app.state.review_service


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_kv_store(request: Request) -> KeyValueStore:
    return request.app.state.kv_store


def get_llm_proxy(request: Request) -> LLMProxyService:
    return request.app.state.llm_proxy


def get_client_id(request: Request) -> str:
    """限流用客户端标识：X-Forwarded-For 首跳，否则对端地址"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
