"""CostTracker -- Token 与成本计算

优先使用 provider 返回的 usage；缺失时按 len(text)/4 估算 token
（粗略启发式，非精确值），再按 cost_per_1k_tokens 换算 USD。
所有方法不抛异常。
"""

import math
from typing import Any

import structlog

from .models import TokenUsage

log = structlog.get_logger()

# 估算启发式：约 4 个字符一个 token
CHARS_PER_TOKEN = 4


class CostTracker:
    """成本追踪器

    提供 usage 解析、token 估算、成本换算等静态方法。
    所有方法均不抛出异常，内部捕获所有错误。
    """

    @staticmethod
    def parse_usage(data: Any) -> TokenUsage | None:
        """从 OpenAI 风格响应体解析 usage

        Args:
            data: 响应 JSON（dict）

        Returns:
            TokenUsage；响应中没有可用的 usage 时返回 None
        """
        try:
            usage = data.get("usage") if isinstance(data, dict) else None
            if not isinstance(usage, dict):
                return None
            total = int(usage.get("total_tokens") or 0)
            prompt = int(usage.get("prompt_tokens") or 0)
            completion = int(usage.get("completion_tokens") or 0)
            if total <= 0:
                total = prompt + completion
            if total <= 0:
                return None
            return TokenUsage(
                prompt_tokens=max(prompt, 0),
                completion_tokens=max(completion, 0),
                total_tokens=total,
            )
        except (TypeError, ValueError) as e:
            log.debug("parse_usage_failed", error=str(e))
            return None

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """按 len(text)/4 估算 token 数（向上取整）"""
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    @staticmethod
    def calculate_cost(tokens: int, cost_per_1k_tokens: float) -> float:
        """token 数 -> USD 成本"""
        if tokens <= 0 or cost_per_1k_tokens <= 0:
            return 0.0
        return (tokens / 1000) * cost_per_1k_tokens

    @classmethod
    def account(
        cls,
        data: Any,
        text: str,
        cost_per_1k_tokens: float,
    ) -> tuple[TokenUsage, bool, float]:
        """综合计算 token 用量与成本

        Returns:
            (token_usage, tokens_estimated, cost_usd) 元组
        """
        usage = cls.parse_usage(data)
        estimated = usage is None
        if usage is None:
            usage = TokenUsage(total_tokens=cls.estimate_tokens(text))
        cost = cls.calculate_cost(usage.total_tokens, cost_per_1k_tokens)
        return usage, estimated, cost
