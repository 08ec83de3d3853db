"""指标查询路由

GET /api/metrics: 指标汇总视图
GET /api/metrics/snapshot: 原始 MetricsSnapshot
"""

from fastapi import APIRouter, Depends

from ..deps import get_review_service
from ..services.review_service import ReviewService

router = APIRouter()


@router.get("/api/metrics")
async def get_metrics_summary(service: ReviewService = Depends(get_review_service)):
    return service.get_metrics_summary().model_dump(mode="json")


@router.get("/api/metrics/snapshot")
async def get_metrics_snapshot(service: ReviewService = Depends(get_review_service)):
    return service.get_snapshot().model_dump(mode="json")
