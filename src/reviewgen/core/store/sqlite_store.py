"""SqliteKeyValueStore -- 基于 aiosqlite 的持久化 KV 存储

单条 upsert 即一个事务，写入后立即 commit，进程重启后可恢复。
"""

from datetime import UTC, datetime

import aiosqlite


class SqliteKeyValueStore:
    """SQLite KV 存储"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    @property
    def conn(self) -> aiosqlite.Connection:
        return self._conn

    async def get(self, key: str) -> str | None:
        cursor = await self._conn.execute(
            "SELECT value FROM kv_store WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return row[0]

    async def set(self, key: str, value: str) -> None:
        await self._conn.execute(
            """
            INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                           updated_at = excluded.updated_at
            """,
            (key, value, datetime.now(UTC).isoformat()),
        )
        await self._conn.commit()

    async def ping(self) -> bool:
        """连通性检查（readiness 使用）"""
        cursor = await self._conn.execute("SELECT 1")
        row = await cursor.fetchone()
        return row is not None

    async def close(self) -> None:
        await self._conn.close()
