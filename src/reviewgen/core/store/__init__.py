"""reviewgen Core Store -- KV 持久化实现

提供工厂函数按后端名称创建 KeyValueStore 实例。
"""

from pathlib import Path

import aiosqlite

from .memory_store import InMemoryKeyValueStore
from .protocols import KeyValueStore
from .sqlite_init import init_db
from .sqlite_store import SqliteKeyValueStore


async def create_sqlite_store(db_path: str) -> SqliteKeyValueStore:
    """创建 SQLite KV 存储

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        已初始化表结构的 SqliteKeyValueStore
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    await init_db(conn)
    return SqliteKeyValueStore(conn)


async def create_kv_store(
    backend: str,
    db_path: str | None = None,
) -> InMemoryKeyValueStore | SqliteKeyValueStore:
    """按后端名称创建 KV 存储

    Args:
        backend: "sqlite" 或 "memory"
        db_path: sqlite 后端的数据库路径

    Raises:
        ValueError: 未知后端，或 sqlite 后端缺少 db_path
    """
    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend == "sqlite":
        if not db_path:
            raise ValueError("sqlite KV 后端需要 db_path")
        return await create_sqlite_store(db_path)
    raise ValueError(f"未知 KV 存储后端: {backend}")


__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "SqliteKeyValueStore",
    "create_kv_store",
    "create_sqlite_store",
    "init_db",
]
