"""数据模型 -- TokenUsage + RawProviderResult

RawProviderResult 是 ProviderClient.call() 的返回值，
由 FallbackOrchestrator 转换为对外的 GenerationResult。
"""

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """Token 使用统计

    key 命名对齐 OpenAI 行业标准：
    prompt_tokens / completion_tokens / total_tokens
    """

    prompt_tokens: int = Field(default=0, ge=0, description="输入 token 数")
    completion_tokens: int = Field(default=0, ge=0, description="输出 token 数")
    total_tokens: int = Field(default=0, ge=0, description="总 token 数")


class RawProviderResult(BaseModel):
    """单个 provider 的调用结果"""

    text: str = Field(min_length=1, description="生成文本")
    provider_id: str = Field(description="provider id（如 openai / groq）")
    model_id: str = Field(default="", description="实际模型名称")
    duration_ms: int = Field(ge=0, description="含重试的总耗时（毫秒）")
    attempts: int = Field(default=1, ge=1, description="实际尝试次数")

    token_usage: TokenUsage = Field(default_factory=TokenUsage, description="Token 使用详情")
    tokens_estimated: bool = Field(
        default=False,
        description="provider 未返回 usage 时按 len(text)/4 估算",
    )
    cost_usd: float = Field(default=0.0, ge=0.0, description="本次调用的 USD 成本")
