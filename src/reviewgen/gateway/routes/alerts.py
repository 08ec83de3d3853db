"""告警事件流路由

GET /api/alerts/stream: 以 SSE 推送 MetricsManager 发布到事件总线的告警，
空闲时发送心跳注释保活。
"""

import asyncio
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from reviewgen.core import ALERTS_TOPIC, EventBus
from reviewgen.core.config import SSE_HEARTBEAT_INTERVAL
from reviewgen.core.models import AlertEvent

from ..deps import get_event_bus

router = APIRouter()


def _alert_to_sse(alert: AlertEvent) -> dict:
    return {
        "event": "alert",
        "data": alert.model_dump_json(),
    }


async def alert_event_stream(
    event_bus: EventBus,
    queue: asyncio.Queue,
) -> AsyncGenerator[dict, None]:
    """从订阅队列产出 SSE 事件，结束时取消订阅"""
    try:
        while True:
            try:
                alert = await asyncio.wait_for(queue.get(), timeout=SSE_HEARTBEAT_INTERVAL)
                yield _alert_to_sse(alert)
            except TimeoutError:
                yield {"comment": "heartbeat"}
    finally:
        event_bus.unsubscribe(ALERTS_TOPIC, queue)


@router.get("/api/alerts/stream")
async def stream_alerts(event_bus: EventBus = Depends(get_event_bus)):
    """SSE 告警流"""
    queue = event_bus.subscribe(ALERTS_TOPIC)
    return EventSourceResponse(alert_event_stream(event_bus, queue))
