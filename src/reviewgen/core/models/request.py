"""GenerationRequest -- 点评生成请求

除 hotel_name / rating 外均为可选字段，默认值与生成引擎一致。
highlights 语义上是集合：去重、小写、排序后存储，保证 fingerprint 与顺序无关。
"""

import hashlib
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .enums import TripType, Voice

# 参与 fingerprint 的字段（全部语义相关字段）
FINGERPRINT_FIELDS = (
    "hotel_name",
    "rating",
    "trip_type",
    "highlights",
    "nights",
    "guests",
    "language",
    "voice",
)


class GenerationRequest(BaseModel):
    """点评生成请求

    同时接受 snake_case 与 camelCase（hotelName / tripType ...）字段名。
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    hotel_name: str = Field(min_length=1, max_length=200, description="酒店名称")
    rating: int = Field(ge=1, le=5, description="评分 1-5")
    trip_type: TripType = Field(default=TripType.LEISURE, description="出行类型")
    highlights: tuple[str, ...] = Field(
        default=(),
        description="亮点集合（顺序无关）",
    )
    nights: int = Field(default=3, ge=1, le=365, description="入住晚数")
    guests: int = Field(default=2, ge=1, le=50, description="入住人数")
    language: str = Field(
        default="en",
        pattern=r"^[a-z]{2}$",
        description="ISO 639-1 语言代码",
    )
    voice: Voice = Field(default=Voice.FRIENDLY, description="文风")

    @field_validator("hotel_name")
    @classmethod
    def _strip_hotel_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("hotel_name 不能为空白")
        return stripped

    @field_validator("highlights", mode="before")
    @classmethod
    def _normalize_highlights(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        normalized = {str(item).strip().lower() for item in value}
        normalized.discard("")
        return tuple(sorted(normalized))

    @field_validator("language", mode="before")
    @classmethod
    def _lower_language(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def canonical_json(self) -> str:
        """key 排序后的规范化 JSON 序列化"""
        data = self.model_dump(mode="json", include=set(FINGERPRINT_FIELDS))
        return json.dumps(data, sort_keys=True, ensure_ascii=False, separators=(",", ":"))

    def fingerprint(self) -> str:
        """请求指纹 -- 规范化 JSON 的 SHA-256 hex

        语义相同的请求（字段顺序、highlights 顺序不同）得到相同指纹。
        """
        return hashlib.sha256(self.canonical_json().encode("utf-8")).hexdigest()
