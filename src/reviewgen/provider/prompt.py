"""Prompt 构造 -- 所有 provider 共享

评分语气、文风（voice）、语言均编码在 prompt 文本中。
"""

from reviewgen.core.models import GenerationRequest, Voice

SYSTEM_PROMPT = (
    "You are a hotel review writer creating authentic, natural-sounding reviews. "
    "Write in first person, be specific but not overly detailed. "
    "Keep reviews between 150-200 words. "
    "Include personal touches and specific observations. "
    "Avoid cliches and overly promotional language."
)

RATING_TONES: dict[int, str] = {
    5: "very positive and enthusiastic",
    4: "positive with minor observations",
    3: "balanced with pros and cons",
    2: "disappointed but constructive",
    1: "negative but professional",
}

VOICE_INSTRUCTIONS: dict[Voice, str] = {
    Voice.PROFESSIONAL: "Use a professional, businesslike tone.",
    Voice.FRIENDLY: "Use a friendly, warm, conversational tone.",
    Voice.ENTHUSIASTIC: "Use an enthusiastic, excited, energetic tone.",
    Voice.DETAILED: "Be detailed, thorough and analytical.",
}

LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "ja": "Japanese",
    "zh": "Chinese",
    "el": "Greek",
}


def rating_tone(rating: int) -> str:
    return RATING_TONES.get(rating, RATING_TONES[3])


def language_name(code: str) -> str:
    """ISO 代码 -> 语言名称，未知代码回退 English"""
    return LANGUAGE_NAMES.get(code, "English")


def build_prompt(request: GenerationRequest) -> str:
    """从请求参数构造 user prompt"""
    guests = "guest" if request.guests == 1 else "guests"
    parts = [
        f"Write a {rating_tone(request.rating)} hotel review for {request.hotel_name}.",
        f"This was a {request.nights}-night {request.trip_type.value} stay "
        f"for {request.guests} {guests}.",
    ]
    if request.highlights:
        parts.append(f"Highlight these aspects: {', '.join(request.highlights)}.")
    parts.append(VOICE_INSTRUCTIONS.get(request.voice, VOICE_INSTRUCTIONS[Voice.FRIENDLY]))
    if request.language != "en":
        parts.append(f"Write in {language_name(request.language)}.")
    return " ".join(parts)


def build_messages(
    request: GenerationRequest,
    use_system_prompt: bool = True,
    user_prefix: str = "",
) -> list[dict[str, str]]:
    """构造 chat messages

    Args:
        request: 生成请求
        use_system_prompt: 是否附带 system message
        user_prefix: user message 前缀（如 "Write a natural hotel review."）

    Returns:
        [{"role": ..., "content": ...}, ...]
    """
    prompt = build_prompt(request)
    if user_prefix:
        prompt = f"{user_prefix.rstrip()} {prompt}"

    messages: list[dict[str, str]] = []
    if use_system_prompt:
        messages.append({"role": "system", "content": SYSTEM_PROMPT})
    messages.append({"role": "user", "content": prompt})
    return messages
