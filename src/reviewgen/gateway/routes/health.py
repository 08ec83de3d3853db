"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查。
    profile=core（默认）: KV 存储连通性
    profile=llm: 额外刷新 provider 可用性，无任何 remote provider 可用时 503
"""

import structlog
from fastapi import APIRouter, Depends, Query, Request
from starlette.responses import JSONResponse

from reviewgen.core.store import KeyValueStore
from reviewgen.provider.config import TEMPLATE_AVAILABILITY_KEY

from ..deps import get_kv_store

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    kv_store: KeyValueStore = Depends(get_kv_store),
    profile: str | None = Query(
        default=None,
        description="core（默认）仅核心检查；llm 额外探测 provider 可用性",
    ),
):
    effective_profile = profile or "core"
    checks: dict = {}
    all_ok = True

    # 1. KV 存储连通性
    try:
        ok = await kv_store.ping()
        checks["kv_store"] = "ok" if ok else "error: ping failed"
        all_ok = all_ok and ok
    except Exception as e:
        checks["kv_store"] = f"error: {e}"
        all_ok = False

    # 2. Provider 可用性
    if effective_profile == "llm":
        service = request.app.state.review_service
        try:
            availability = await service.check_availability(refresh=True)
        except Exception as e:
            log.warning("ready_availability_failed", error=str(e))
            availability = {}
        checks["providers"] = availability
        remote = {k: v for k, v in availability.items() if k != TEMPLATE_AVAILABILITY_KEY}
        if not any(remote.values()):
            all_ok = False
    else:
        checks["providers"] = "skipped"

    status_code = 200 if all_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if all_ok else "not_ready",
            "profile": effective_profile,
            "checks": checks,
        },
    )
