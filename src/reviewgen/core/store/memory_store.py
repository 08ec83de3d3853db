"""InMemoryKeyValueStore -- 进程内 KV 存储（测试 / 无持久化部署）"""


class InMemoryKeyValueStore:
    """基于 dict 的 KV 存储"""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        """与 SqliteKeyValueStore 接口对齐，无资源需释放"""
        return None
