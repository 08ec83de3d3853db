"""CacheLayer + InFlightRegistry

CacheLayer: fingerprint -> GenerationResult 的有界 LRU 缓存，
ttl 在 lookup 时惰性检查；所有读写经 asyncio.Lock 串行化。

InFlightRegistry: fingerprint -> asyncio.Future，
保证同一 fingerprint 同一时刻至多一个上游调用，其余调用方等待并共享结果。
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from reviewgen.core.models import CachePolicy, GenerationResult

from .exceptions import CacheUnavailableError

log = structlog.get_logger()


class CacheEntry(BaseModel):
    """缓存条目 -- 写入后不可变，source 保留最初来源"""

    model_config = ConfigDict(frozen=True)

    key: str
    value: GenerationResult
    inserted_at: float = Field(description="写入时刻（clock 读数，秒）")
    ttl_s: float = Field(gt=0)

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl_s


class CacheLayer:
    """有界 LRU 缓存

    - 容量满时淘汰最久未使用的条目
    - 过期条目在 lookup 时视为 miss 并移除，purge_expired() 可批量清理
    - close() 后所有操作抛出 CacheUnavailableError
    """

    def __init__(
        self,
        policy: CachePolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policy = policy or CachePolicy()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._closed = False
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def policy(self) -> CachePolicy:
        return self._policy

    @property
    def enabled(self) -> bool:
        return self._policy.enabled and not self._closed

    @property
    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _ensure_open(self) -> None:
        if self._closed:
            raise CacheUnavailableError("缓存已关闭")

    async def lookup(self, key: str) -> GenerationResult | None:
        """按 fingerprint 查找

        Returns:
            命中且未过期的 GenerationResult（原始来源），否则 None

        Raises:
            CacheUnavailableError: 缓存已关闭
        """
        self._ensure_open()
        if not self._policy.enabled:
            return None

        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                log.debug("cache_entry_expired", key=key[:12])
                return None
            # LRU: 命中即移到末尾
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    async def store(self, key: str, value: GenerationResult) -> None:
        """写入条目，容量满时淘汰 LRU 条目

        Raises:
            CacheUnavailableError: 缓存已关闭
        """
        self._ensure_open()
        if not self._policy.enabled:
            return

        entry = CacheEntry(
            key=key,
            value=value,
            inserted_at=self._clock(),
            ttl_s=self._policy.ttl_s,
        )
        async with self._lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self._policy.max_size:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                log.debug("cache_entry_evicted", key=evicted_key[:12])
            self._entries[key] = entry

    async def purge_expired(self) -> int:
        """清理所有过期条目，返回清理数量"""
        self._ensure_open()
        async with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
        if expired:
            log.info("cache_purged", purged=len(expired), size=len(self._entries))
        return len(expired)

    async def clear(self) -> int:
        """清空缓存，返回清除数量"""
        self._ensure_open()
        async with self._lock:
            cleared = len(self._entries)
            self._entries.clear()
        log.info("cache_cleared", cleared=cleared)
        return cleared

    def stats(self) -> dict[str, Any]:
        """缓存统计（过期条目在下次 lookup / purge 前仍计入 total）"""
        now = self._clock()
        expired = sum(1 for e in self._entries.values() if e.is_expired(now))
        lookups = self._hits + self._misses
        return {
            "enabled": self.enabled,
            "total": len(self._entries),
            "valid": len(self._entries) - expired,
            "expired": expired,
            "max_size": self._policy.max_size,
            "ttl_s": self._policy.ttl_s,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": self._hits / lookups if lookups else 0.0,
        }

    async def run_purge_loop(self, interval_s: float | None = None) -> None:
        """后台定期清理过期条目，直到被取消"""
        interval = interval_s or self._policy.purge_interval_s
        while True:
            await asyncio.sleep(interval)
            try:
                await self.purge_expired()
            except CacheUnavailableError:
                log.info("cache_purge_loop_stopped")
                return

    def close(self) -> None:
        self._closed = True
        self._entries.clear()


class InFlightRegistry:
    """in-flight 去重注册表

    claim() 无 await，在单事件循环内天然原子：
    第一个调用方成为 owner，其余调用方拿到同一个 Future 等待。
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Future[GenerationResult]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    def claim(self, key: str) -> tuple[asyncio.Future[GenerationResult], bool]:
        """登记或加入 key 的 in-flight 生成

        Returns:
            (future, is_owner)
        """
        future = self._pending.get(key)
        if future is not None:
            return future, False
        future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        return future, True

    def resolve(self, key: str, result: GenerationResult) -> None:
        """以结果释放登记，唤醒所有等待方"""
        future = self._pending.pop(key, None)
        if future is not None and not future.done():
            future.set_result(result)

    def fail(self, key: str, error: BaseException) -> None:
        """以异常释放登记，等待方收到同一异常"""
        future = self._pending.pop(key, None)
        if future is None or future.done():
            return
        if isinstance(error, asyncio.CancelledError):
            future.cancel()
            return
        future.set_exception(error)
        # 无等待方时避免 "exception was never retrieved"
        future.exception()
