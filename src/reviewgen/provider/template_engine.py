"""TemplateEngine -- 降级链末端的本地模板生成

纯函数、同步、无 I/O：同一请求总是得到同一文本（模板按 fingerprint 选择），
输出非空且包含酒店名称。
"""

import hashlib

from reviewgen.core.models import GenerationRequest

from .exceptions import TemplateEngineError

HIGHLIGHT_PHRASES: dict[str, str] = {
    "location": "the location was perfect",
    "cleanliness": "the room was spotlessly clean",
    "comfort": "the bed was extremely comfortable",
    "service": "the staff provided excellent service",
    "breakfast": "the breakfast was delicious",
    "wifi": "the WiFi was fast and reliable",
    "value": "it offered great value for money",
    "amenities": "the amenities were modern and well-maintained",
    "pool": "the pool area was a real highlight",
    "view": "the view from our room was stunning",
}

NO_HIGHLIGHTS_SENTENCE = "The overall experience was as expected."

# 占位符: {hotel} {nights} {trip} {highlights} {tone}
TEMPLATES: dict[int, tuple[str, ...]] = {
    5: (
        "Our {nights}-night {trip} stay at {hotel} was wonderful from start to finish. "
        "{highlights} I left feeling {tone} and already planning a return visit.",
        "{hotel} set a new standard for us. {highlights} "
        "For a {trip} trip it was everything we hoped for, and we left {tone}.",
        "I can't say enough good things about {hotel}. Over {nights} nights every detail "
        "was handled with care. {highlights} Highly recommended for {trip} travelers.",
    ),
    4: (
        "{hotel} gave us a very good {nights}-night {trip} stay. {highlights} "
        "A few small things could be better, but overall we were {tone}.",
        "Our {trip} trip to {hotel} was a pleasant one. {highlights} "
        "I would happily stay here again.",
        "Solid choice. {hotel} was comfortable and well run during our {nights} nights. "
        "{highlights} We came away {tone}.",
    ),
    3: (
        "{hotel} was fine for our {nights}-night {trip} stay. {highlights} "
        "Nothing stood out, but nothing went badly either.",
        "An average experience at {hotel}. {highlights} "
        "It covers the basics for a {trip} trip.",
        "We found {hotel} to be adequate. {highlights} "
        "Reasonable if your expectations are modest, and we left {tone}.",
    ),
    2: (
        "Our {nights}-night stay at {hotel} was below what we expected. {highlights} "
        "For a {trip} trip it left us {tone}.",
        "{hotel} has potential but fell short during our {trip} stay. {highlights} "
        "Several issues took the shine off the visit.",
        "I wanted to like {hotel}. {highlights} "
        "Unfortunately our {nights} nights there left us {tone}.",
    ),
    1: (
        "Our {nights}-night {trip} stay at {hotel} was a real letdown. {highlights} "
        "I would not book here again.",
        "{hotel} did not deliver on its promises. {highlights} "
        "We left {tone} and cut our plans short.",
        "I cannot recommend {hotel}. {highlights} "
        "It was a poor experience for a {trip} trip.",
    ),
}

TONES: dict[int, tuple[str, ...]] = {
    5: ("delighted", "thrilled", "completely satisfied"),
    4: ("pleased", "satisfied", "content"),
    3: ("indifferent", "neither impressed nor disappointed", "lukewarm"),
    2: ("disappointed", "frustrated", "underwhelmed"),
    1: ("very disappointed", "frustrated", "unhappy"),
}

# 所有模板都失效时使用的兜底句式
EMERGENCY_TEMPLATE = "We stayed at {hotel}. Rating: {rating}/5."


def highlights_to_text(highlights: tuple[str, ...] | list[str]) -> str:
    """亮点列表 -> 自然语言句子"""
    if not highlights:
        return NO_HIGHLIGHTS_SENTENCE
    phrases = [HIGHLIGHT_PHRASES.get(h, h) for h in highlights]
    if len(phrases) == 1:
        sentence = phrases[0]
    elif len(phrases) == 2:
        sentence = f"{phrases[0]} and {phrases[1]}"
    else:
        sentence = f"{', '.join(phrases[:-1])}, and {phrases[-1]}"
    return sentence[0].upper() + sentence[1:] + "."


def _pick(options: tuple[str, ...], seed: int) -> str:
    return options[seed % len(options)]


class TemplateEngine:
    """确定性模板生成器"""

    def generate(self, request: GenerationRequest) -> str:
        """生成点评文本

        Raises:
            TemplateEngineError: 输出为空或缺少酒店名称（程序缺陷）
        """
        seed = int(hashlib.sha256(request.canonical_json().encode("utf-8")).hexdigest()[:8], 16)
        rating = request.rating if request.rating in TEMPLATES else 3
        template = _pick(TEMPLATES[rating], seed)
        tone = _pick(TONES[rating], seed >> 4)

        text = template.format(
            hotel=request.hotel_name,
            nights=request.nights,
            trip=request.trip_type.value,
            highlights=highlights_to_text(request.highlights),
            tone=tone,
        ).strip()

        if not text or request.hotel_name not in text:
            text = EMERGENCY_TEMPLATE.format(hotel=request.hotel_name, rating=request.rating)
        if not text.strip():
            raise TemplateEngineError(f"模板生成结果为空: {request.hotel_name!r}")
        return text
