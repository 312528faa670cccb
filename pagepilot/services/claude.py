import json
import logging
from typing import Any

import anthropic

from pagepilot.config import settings

logger = logging.getLogger(__name__)

MAX_TOKENS = 1000

CONTENT_TYPE_INSTRUCTIONS = {
    "ad_copy": "Write persuasive Facebook ad copy with a clear call-to-action.",
    "post": "Write an engaging Facebook post that invites comments.",
    "response": "Write a helpful, empathetic reply to a customer.",
    "strategy": "Write a concise marketing strategy with concrete next steps.",
}

ANALYSIS_FALLBACK = {
    "sentiment": "neutral",
    "tone": "unknown",
    "readability_score": 50,
    "key_themes": [],
    "improvement_suggestions": ["Unable to analyze content automatically. Review manually."],
    "engagement_prediction": "medium",
}

def get_client():
    if not settings.anthropic_api_key:
        raise RuntimeError("ANTHROPIC_API_KEY is missing. Please set it in your environment or .env file.")
    return anthropic.Anthropic(api_key=settings.anthropic_api_key)

def _text_of(message) -> str:
    return "".join(block.text for block in message.content if getattr(block, "type", None) == "text")

def generate_content(prompt: str, content_type: str = "post", brand: str | None = None,
                     audience: str | None = None) -> dict[str, Any]:
    client = get_client()
    instructions = CONTENT_TYPE_INSTRUCTIONS.get(content_type, CONTENT_TYPE_INSTRUCTIONS["post"])
    system = f"You are an expert social media marketer. {instructions}"
    if brand:
        system += f" Brand voice: {brand}."
    if audience:
        system += f" Target audience: {audience}."

    try:
        message = client.messages.create(
            model=settings.claude_model,
            max_tokens=MAX_TOKENS,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
    except anthropic.AuthenticationError as e:
        raise RuntimeError("Anthropic authentication failed. Check ANTHROPIC_API_KEY.") from e
    except anthropic.RateLimitError as e:
        raise RuntimeError("Anthropic rate limit reached. Try again later.") from e
    except anthropic.APIError as e:
        raise RuntimeError(f"Claude content generation failed: {e}") from e

    return {
        "content": _text_of(message).strip(),
        "confidence": 0.9,
        "model": settings.claude_model,
        "usage": {
            "input_tokens": message.usage.input_tokens,
            "output_tokens": message.usage.output_tokens,
        },
    }

def analyze_content(content: str) -> dict[str, Any]:
    try:
        client = get_client()
        message = client.messages.create(
            model=settings.claude_model,
            max_tokens=MAX_TOKENS,
            system=(
                "You analyze social media content. Respond only with JSON: "
                '{"sentiment": "positive|neutral|negative", "tone": "", "readability_score": 0-100, '
                '"key_themes": [], "improvement_suggestions": [], "engagement_prediction": "low|medium|high"}'
            ),
            messages=[{"role": "user", "content": f"Analyze this content:\n\n{content}"}],
        )
        raw = _text_of(message)
        # Claude occasionally wraps JSON in prose
        start, end = raw.find("{"), raw.rfind("}")
        if start == -1 or end == -1:
            raise ValueError("no JSON object in response")
        parsed = json.loads(raw[start:end + 1])
    except (RuntimeError, anthropic.APIError, ValueError) as e:
        logger.error("Claude content analysis failed: %s", e)
        return dict(ANALYSIS_FALLBACK)

    return {**ANALYSIS_FALLBACK, **{k: v for k, v in parsed.items() if k in ANALYSIS_FALLBACK}}
