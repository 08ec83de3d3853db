"""EventBus -- 内存中类型化事件发布/订阅

每个订阅者持有一个有界 asyncio.Queue，按主题（topic）订阅。
publish 非阻塞：队列已满的订阅者被视为失效并移除，发布方永不等待。
"""

import asyncio
from collections import defaultdict
from typing import Any

import structlog

log = structlog.get_logger()

# 告警事件主题
ALERTS_TOPIC = "alerts"


class EventBus:
    """事件总线 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # topic -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    def subscribe(self, topic: str) -> asyncio.Queue:
        """订阅指定主题

        Args:
            topic: 主题名称

        Returns:
            asyncio.Queue 实例，新事件会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[topic].add(queue)
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        """取消订阅"""
        subscribers = self._subscribers.get(topic)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def publish(self, topic: str, event: Any) -> int:
        """向主题的所有订阅者广播事件（非阻塞）

        Args:
            topic: 主题名称
            event: 事件对象

        Returns:
            成功投递的订阅者数量
        """
        delivered = 0
        dead_queues = []
        for queue in self._subscribers.get(topic, set()):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列
        for q in dead_queues:
            log.warning("event_bus_subscriber_dropped", topic=topic)
            self.unsubscribe(topic, q)

        return delivered
