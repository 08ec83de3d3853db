"""GenerationResult -- 点评生成结果

所有路径（remote provider / cache / template）统一返回此类型。
text 永不为空；request_id 每次调用唯一（ULID），与 fingerprint 无关。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GenerationResult(BaseModel):
    """点评生成结果 -- 携带 provenance 元数据"""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    text: str = Field(min_length=1, description="生成的点评文本")
    source: str = Field(description="来源：primary / secondary / ... / template / cache")
    provider: str = Field(default="", description="实际 provider id（如 openai / groq / template）")
    model_id: str = Field(default="", description="模型标识")
    request_id: str = Field(description="调用唯一标识（ULID）")
    latency_ms: int = Field(default=0, ge=0, description="端到端耗时（毫秒）")
    cost_usd: float = Field(default=0.0, ge=0.0, description="本次调用 USD 成本")
    cached: bool = Field(default=False, description="是否命中缓存")
    tokens_used: int = Field(default=0, ge=0, description="token 用量")
    tokens_estimated: bool = Field(
        default=False,
        description="token 是否为估算值（provider 未返回 usage）",
    )
    original_source: str | None = Field(
        default=None,
        description="缓存命中时，条目最初的来源",
    )
    ab_variant: str | None = Field(default=None, description="A/B 分组（仅打标）")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="结果生成时间",
    )
