"""ABAssigner -- 会话级 A/B 分组（仅用于指标打标）

分组由 session id 哈希分桶决定：同一会话始终落在同一分组。
分组结果只写入指标与 GenerationResult.ab_variant，不改变降级链路由。
"""

import hashlib
from collections import OrderedDict

import structlog

from reviewgen.core.models import ABTestingPolicy, ABVariant

log = structlog.get_logger()


def bucket_for(session_id: str) -> float:
    """session id -> [0, 100) 的稳定分桶值"""
    digest = hashlib.sha256(session_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % 10_000 / 100


class ABAssigner:
    """A/B 分组器

    已见会话表有上限（LRU 淘汰），仅用于判断是否首次分配；
    被淘汰的会话再次出现时分组不变，只会多记一次 ab_assignment。
    """

    def __init__(self, policy: ABTestingPolicy | None = None) -> None:
        self._policy = policy or ABTestingPolicy()
        self._sessions: OrderedDict[str, ABVariant] = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self._policy.enabled

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def variant_for(self, session_id: str) -> ABVariant:
        if bucket_for(session_id) < self._policy.llm_percentage:
            return ABVariant.LLM
        return ABVariant.TEMPLATE

    def assign(self, session_id: str | None) -> tuple[ABVariant | None, bool]:
        """为会话分配分组

        Returns:
            (variant, is_new)：未启用或无 session id 时返回 (None, False)
        """
        if not self._policy.enabled or not session_id:
            return None, False

        existing = self._sessions.get(session_id)
        if existing is not None:
            self._sessions.move_to_end(session_id)
            return existing, False

        variant = self.variant_for(session_id)
        self._sessions[session_id] = variant
        while len(self._sessions) > self._policy.max_sessions:
            self._sessions.popitem(last=False)
        log.debug("ab_variant_assigned", variant=variant.value)
        return variant, True
