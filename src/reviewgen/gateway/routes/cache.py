"""缓存维护路由

GET /api/cache/stats: 缓存统计
POST /api/cache/clear: 清空缓存，返回清除数量与最新统计
"""

from fastapi import APIRouter, Depends

from ..deps import get_review_service
from ..services.review_service import ReviewService

router = APIRouter()


@router.get("/api/cache/stats")
async def cache_stats(service: ReviewService = Depends(get_review_service)):
    return service.cache_stats()


@router.post("/api/cache/clear")
async def clear_cache(service: ReviewService = Depends(get_review_service)):
    cleared = await service.clear_cache()
    return {"cleared": cleared, "stats": service.cache_stats()}
