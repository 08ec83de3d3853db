"""reviewgen Core -- 数据模型、KV 存储、事件总线"""

from .event_bus import ALERTS_TOPIC, EventBus

__all__ = ["ALERTS_TOPIC", "EventBus"]
