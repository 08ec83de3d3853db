"""EventBus 发布/订阅测试"""

from reviewgen.core import ALERTS_TOPIC, EventBus


class TestEventBus:
    async def test_publish_delivers_to_all_subscribers(self):
        """同一主题的所有订阅者都收到事件"""
        bus = EventBus()
        q1 = bus.subscribe(ALERTS_TOPIC)
        q2 = bus.subscribe(ALERTS_TOPIC)

        delivered = bus.publish(ALERTS_TOPIC, {"type": "cost"})

        assert delivered == 2
        assert q1.get_nowait() == {"type": "cost"}
        assert q2.get_nowait() == {"type": "cost"}

    async def test_topics_are_isolated(self):
        bus = EventBus()
        queue = bus.subscribe("other")
        assert bus.publish(ALERTS_TOPIC, "x") == 0
        assert queue.empty()

    async def test_publish_without_subscribers(self):
        assert EventBus().publish(ALERTS_TOPIC, "x") == 0

    async def test_full_queue_dropped(self):
        """队列已满的订阅者被移除，发布方不阻塞"""
        bus = EventBus(queue_maxsize=1)
        bus.subscribe(ALERTS_TOPIC)
        assert bus.publish(ALERTS_TOPIC, 1) == 1
        assert bus.publish(ALERTS_TOPIC, 2) == 0
        assert bus.subscriber_count(ALERTS_TOPIC) == 0

    async def test_unsubscribe(self):
        bus = EventBus()
        queue = bus.subscribe(ALERTS_TOPIC)
        bus.unsubscribe(ALERTS_TOPIC, queue)
        assert bus.subscriber_count(ALERTS_TOPIC) == 0
        # 重复取消订阅无副作用
        bus.unsubscribe(ALERTS_TOPIC, queue)
