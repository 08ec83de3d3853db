"""Provider 状态路由

GET /api/providers: provider 配置列表（不含密钥）
GET /api/providers/availability: {provider: bool}，refresh=true 时立即探测
"""

from fastapi import APIRouter, Depends, Query

from ..deps import get_review_service
from ..services.review_service import ReviewService

router = APIRouter()


@router.get("/api/providers")
async def list_providers(service: ReviewService = Depends(get_review_service)):
    config_manager = service.config_manager
    return {
        "proxy_enabled": config_manager.proxy.enabled,
        "providers": [
            {
                "provider_id": cfg.provider_id,
                "source": config_manager.source_label(cfg.provider_id),
                "model_id": cfg.model_id,
                "endpoint": config_manager.endpoint_for(cfg.provider_id),
                "timeout_ms": cfg.timeout_ms,
                "max_retries": cfg.max_retries,
                "cost_per_1k_tokens": cfg.cost_per_1k_tokens,
                "priority": cfg.priority,
                "enabled": cfg.enabled,
                "available": cfg.available,
            }
            for cfg in config_manager.list_providers()
        ],
    }


@router.get("/api/providers/availability")
async def get_availability(
    refresh: bool = Query(default=False, description="是否立即重新探测"),
    service: ReviewService = Depends(get_review_service),
):
    return await service.check_availability(refresh=refresh)
