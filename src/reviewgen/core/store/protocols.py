"""KeyValueStore Protocol 接口定义

使用 Python Protocol 实现结构化子类型（duck typing），
后端可替换：内存（测试）/ SQLite（生产）。
"""

from typing import Protocol


class KeyValueStore(Protocol):
    """KV 存储接口 -- 指标与成本账本的持久化载体"""

    async def get(self, key: str) -> str | None:
        """读取 key 对应的值，不存在返回 None"""
        ...

    async def set(self, key: str, value: str) -> None:
        """写入（覆盖）key 对应的值"""
        ...

    async def ping(self) -> bool:
        """连通性检查，readiness 使用"""
        ...

    async def close(self) -> None:
        """释放底层资源"""
        ...
