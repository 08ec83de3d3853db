"""点评生成路由

POST /api/reviews: 接收 GenerationRequest（支持 camelCase 字段名），按客户端限流，
返回 GenerationResult。可选 X-Session-ID 头用于 A/B 打标。
"""

import structlog
from fastapi import APIRouter, Depends, Header
from starlette.responses import JSONResponse

from reviewgen.core.models import GenerationRequest
from reviewgen.provider import TemplateEngineError

from ..deps import get_client_id, get_review_service
from ..services.review_service import ReviewService

log = structlog.get_logger()

router = APIRouter()


@router.post("/api/reviews")
async def create_review(
    body: GenerationRequest,
    x_session_id: str | None = Header(default=None),
    client_id: str = Depends(get_client_id),
    service: ReviewService = Depends(get_review_service),
):
    """生成点评

    - 成功返回 200 + GenerationResult（camelCase）
    - provider 故障不会导致失败，结果 source 标明来源
    - 同一客户端超过入口限流返回 429
    - 仅模板兜底缺陷返回 500
    """
    if not service.admit(client_id):
        log.warning("review_rate_limited", client_id=client_id)
        return JSONResponse(
            status_code=429,
            content={"error": {"code": "RATE_LIMITED", "message": "Too many requests"}},
            headers={"Retry-After": str(service.retry_after(client_id))},
        )
    try:
        result = await service.generate(body, session_id=x_session_id)
    except TemplateEngineError as e:
        log.error("review_generation_defect", error=str(e))
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "TEMPLATE_ENGINE_DEFECT",
                    "message": "Review generation failed",
                }
            },
        )
    return JSONResponse(
        status_code=200,
        content=result.model_dump(mode="json", by_alias=True),
    )
