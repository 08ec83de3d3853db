"""BackoffPolicy -- 指数退避策略值对象

所有 ProviderClient 共享同一套退避逻辑：
delay = base × 2^attempt（attempt 从 0 开始），上限 max_delay，可选比例抖动。
"""

import random

from pydantic import BaseModel, ConfigDict, Field


class BackoffPolicy(BaseModel):
    """重试退避策略

    max_retries 为额外重试次数，总尝试次数 = max_retries + 1。
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=2, ge=0, description="额外重试次数")
    base_delay_s: float = Field(default=1.0, ge=0, description="基础延迟（秒）")
    max_delay_s: float = Field(default=30.0, ge=0, description="单次延迟上限（秒）")
    jitter: float = Field(
        default=0.1,
        ge=0,
        le=1,
        description="抖动比例：在 delay 基础上随机增加 [0, jitter×delay]",
    )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, attempt: int) -> bool:
        """第 attempt 次（0 起始）尝试失败后是否还应重试"""
        return attempt < self.max_retries

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """第 attempt 次（0 起始）失败后的等待时长（秒）"""
        delay = min(self.base_delay_s * (2**attempt), self.max_delay_s)
        if self.jitter and delay > 0:
            source = rng or random
            delay += source.uniform(0, self.jitter * delay)
        return delay
