"""告警 SSE 流测试 -- 直接驱动事件生成器"""

import json

from reviewgen.core import ALERTS_TOPIC, EventBus
from reviewgen.core.models import (
    AlertEvent,
    AlertThresholds,
    AlertType,
    MetricEvent,
    MonitoringPolicy,
)
from reviewgen.gateway.routes import alerts as alerts_route
from reviewgen.provider import MetricsManager


class TestAlertStream:
    async def test_alert_delivered_and_unsubscribed(self):
        bus = EventBus()
        queue = bus.subscribe(ALERTS_TOPIC)
        stream = alerts_route.alert_event_stream(bus, queue)

        bus.publish(
            ALERTS_TOPIC,
            AlertEvent(type=AlertType.COST, message="当日成本超限", value=1.5, threshold=1.0),
        )
        item = await anext(stream)
        assert item["event"] == "alert"
        payload = json.loads(item["data"])
        assert payload["type"] == "cost"
        assert payload["value"] == 1.5

        await stream.aclose()
        assert bus.subscriber_count(ALERTS_TOPIC) == 0

    async def test_heartbeat_when_idle(self, monkeypatch):
        monkeypatch.setattr(alerts_route, "SSE_HEARTBEAT_INTERVAL", 0.01)
        bus = EventBus()
        stream = alerts_route.alert_event_stream(bus, bus.subscribe(ALERTS_TOPIC))

        assert await anext(stream) == {"comment": "heartbeat"}
        await stream.aclose()

    async def test_metrics_alert_reaches_stream(self):
        bus = EventBus()
        stream = alerts_route.alert_event_stream(bus, bus.subscribe(ALERTS_TOPIC))
        metrics = MetricsManager(
            policy=MonitoringPolicy(thresholds=AlertThresholds(avg_latency_ms=10)),
            event_bus=bus,
        )
        await metrics.record(MetricEvent.provider_success("openai", latency_ms=250))

        item = await anext(stream)
        assert json.loads(item["data"])["type"] == "latency"
        await stream.aclose()
