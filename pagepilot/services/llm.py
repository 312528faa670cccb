from typing import Any
import json
import logging
from openai import OpenAI, OpenAIError
from pagepilot.config import settings

logger = logging.getLogger(__name__)

FALLBACK_CS_RESPONSE = "Thank you for reaching out. A team member will assist you shortly."

FALLBACK_SHORT_POST = (
    "Discover what makes us different! Our team is dedicated to bringing you the best experience. "
    "What would you like to see from us next? #Community #Growth"
)

GENERIC_TEMPLATES = {
    "free": "Check out our latest update on {topic}! We're excited to share this with our community. "
            "Let us know what you think in the comments below.",
}

def get_client():
    if not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY is missing. Please set it in your environment or .env file.")
    return OpenAI(api_key=settings.openai_api_key)

def _chat_json(messages: list[dict[str, str]], temperature: float = 0.7, max_tokens: int | None = None) -> dict[str, Any]:
    client = get_client()
    kwargs: dict[str, Any] = {
        "model": settings.openai_model,
        "messages": messages,
        "response_format": {"type": "json_object"},
        "temperature": temperature,
    }
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    response = client.chat.completions.create(**kwargs)
    return json.loads(response.choices[0].message.content or "{}")

def _clamp(value: Any, low: float = 0.0, high: float = 1.0, default: float = 0.5) -> float:
    try:
        return max(low, min(high, float(value)))
    except (TypeError, ValueError):
        return default

def generate_customer_service_response(
    customer_message: str,
    history: list[str] | None = None,
    business_context: str | None = None,
) -> dict[str, Any]:
    """
    Drafts a reply to a customer message.

    Returns {response, confidence, requires_human, sentiment}. Provider failures
    return a conservative fallback that routes the conversation to a human.
    """
    system = (
        "You are a professional customer service representative for a business on Facebook. "
        "Respond helpfully and empathetically. Keep responses concise and friendly. "
        "If the issue is complex, involves refunds, legal matters or an angry customer, set requiresHuman to true. "
        "Respond with JSON in this format: "
        '{"response": "your response", "confidence": 0.0-1.0, "requiresHuman": boolean, '
        '"sentiment": "positive|neutral|negative"}'
    )
    history_text = "\n".join(history or [])
    prompt = (
        f"Business context: {business_context or 'General business'}\n"
        f"Previous conversation:\n{history_text}\n\n"
        f"Customer message: {customer_message}"
    )
    try:
        result = _chat_json([
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ])
        return {
            "response": result.get("response") or FALLBACK_CS_RESPONSE,
            "confidence": _clamp(result.get("confidence"), default=0.5),
            "requires_human": bool(result.get("requiresHuman", False)),
            "sentiment": result.get("sentiment") or "neutral",
        }
    except (OpenAIError, RuntimeError, ValueError) as e:
        logger.error("Customer service generation failed: %s", e)
        return {
            "response": FALLBACK_CS_RESPONSE,
            "confidence": 0.1,
            "requires_human": True,
            "sentiment": "neutral",
        }

def generate_ad_optimization_suggestions(
    ad_data: dict[str, Any],
    objective: str | None = None,
    audience: str | None = None,
) -> list[dict[str, Any]]:
    system = (
        "You are a Facebook ads optimization expert. Analyze the campaign data and provide actionable "
        "recommendations. Respond with JSON: "
        '{"suggestions": [{"type": "budget|targeting|creative|timing", "title": "", "description": "", '
        '"priority": "high|medium|low", "expectedImpact": ""}]}'
    )
    prompt = (
        f"Ad data: {json.dumps(ad_data, default=str)}\n"
        f"Campaign objective: {objective or 'engagement'}\n"
        f"Target audience: {audience or 'not specified'}"
    )
    try:
        result = _chat_json([
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ])
    except (OpenAIError, RuntimeError, ValueError) as e:
        logger.error("Ad optimization suggestions failed: %s", e)
        return []

    suggestions = []
    for s in result.get("suggestions") or []:
        if not isinstance(s, dict):
            continue
        suggestions.append({
            "type": s.get("type", "creative"),
            "title": s.get("title", ""),
            "description": s.get("description", ""),
            "priority": s.get("priority", "medium"),
            "expected_impact": s.get("expectedImpact") or s.get("expected_impact", ""),
        })
    return suggestions

def check_policy_compliance(
    content: str,
    target_audience: str | None = None,
    category: str | None = None,
) -> dict[str, Any]:
    system = (
        "You are a Facebook advertising policy expert. Review the content against Facebook's advertising "
        "policies and community standards. Respond with JSON: "
        '{"isCompliant": boolean, "riskLevel": "low|medium|high|critical", '
        '"violations": ["..."], "suggestions": ["..."]}'
    )
    prompt = (
        f"Content: {content}\n"
        f"Target audience: {target_audience or 'general'}\n"
        f"Category: {category or 'general'}"
    )
    try:
        result = _chat_json([
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ], temperature=0.2)
        return {
            "is_compliant": bool(result.get("isCompliant", False)),
            "risk_level": result.get("riskLevel", "medium"),
            "violations": list(result.get("violations") or []),
            "suggestions": list(result.get("suggestions") or []),
        }
    except (OpenAIError, RuntimeError, ValueError) as e:
        logger.error("Policy compliance check failed: %s", e)
        return {
            "is_compliant": False,
            "risk_level": "medium",
            "violations": ["Unable to analyze content"],
            "suggestions": ["Please review content manually"],
        }

def generate_ad_copy(
    product: str,
    target_audience: str | None = None,
    objective: str | None = None,
    tone: str = "professional",
) -> dict[str, list[str]]:
    system = (
        "You are an expert Facebook ad copywriter. Create compelling, policy-compliant ad copy. "
        'Respond with JSON: {"headlines": ["..."], "descriptions": ["..."], "ctaButtons": ["..."]}'
    )
    prompt = (
        f"Product/Service: {product}\n"
        f"Target audience: {target_audience or 'general'}\n"
        f"Objective: {objective or 'conversions'}\n"
        f"Tone: {tone}\n"
        "Provide 5 headlines (max 40 chars), 3 descriptions (max 125 chars) and 3 CTA buttons."
    )
    try:
        result = _chat_json([
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ], temperature=0.8)
        return {
            "headlines": list(result.get("headlines") or []),
            "descriptions": list(result.get("descriptions") or []),
            "cta_buttons": list(result.get("ctaButtons") or result.get("cta_buttons") or []),
        }
    except (OpenAIError, RuntimeError, ValueError) as e:
        logger.error("Ad copy generation failed: %s", e)
        return {
            "headlines": [f"Discover {product}"],
            "descriptions": [f"Learn more about {product} today."],
            "cta_buttons": ["Learn More"],
        }

def analyze_sentiment(text: str) -> dict[str, Any]:
    """Raises on provider failure; callers decide the fallback."""
    result = _chat_json([
        {"role": "system", "content": (
            "You are a sentiment analysis expert. Analyze the sentiment of the text. Respond with JSON: "
            '{"sentiment": "positive|negative|neutral", "confidence": 0.0-1.0, "emotions": ["..."]}'
        )},
        {"role": "user", "content": text},
    ], temperature=0.0)
    return {
        "sentiment": result.get("sentiment", "neutral"),
        "confidence": _clamp(result.get("confidence"), default=0.5),
        "emotions": list(result.get("emotions") or []),
    }

def generate_facebook_post(
    topic: str,
    business_context: str | None = None,
    content_type: str = "engagement",
) -> dict[str, Any]:
    result = _chat_json([
        {"role": "system", "content": (
            "You are a social media manager who writes high-performing Facebook posts. "
            'Respond with JSON: {"content": "post text", "hashtags": ["#tag"], '
            '"seoScore": 0-100, "estimatedReach": integer}'
        )},
        {"role": "user", "content": (
            f"Topic: {topic}\nContent type: {content_type}\n"
            f"Business context: {business_context or 'General business'}"
        )},
    ])
    hashtags = result.get("hashtags") or []
    return {
        "content": (result.get("content") or "").strip(),
        "hashtags": [h if h.startswith("#") else f"#{h}" for h in hashtags if isinstance(h, str)],
        "seo_score": int(result.get("seoScore") or 0),
        "estimated_reach": int(result.get("estimatedReach") or 0),
    }

def generate_short_post(topic: str) -> str:
    """Short engaging post for the auto-poster. Falls back to a fixed post."""
    try:
        result = _chat_json([
            {"role": "system", "content": (
                "You are a social media expert. Create engaging Facebook posts that drive interaction. "
                'Respond with JSON: {"post": "text"}'
            )},
            {"role": "user", "content": (
                f"Create an engaging Facebook post about {topic}. Make it conversational, include a call-to-action, "
                "and keep it under 200 characters. Include relevant emojis and hashtags."
            )},
        ], max_tokens=150)
        post = (result.get("post") or "").strip()
        return post or FALLBACK_SHORT_POST
    except (OpenAIError, RuntimeError, ValueError) as e:
        logger.error("Short post generation failed: %s", e)
        return FALLBACK_SHORT_POST

def generate_plan_content(plan: str, topic: str, top_posts: list[str] | None = None) -> dict[str, Any]:
    """
    Subscription-tier content generation.

    free       -> templated text, no model call
    pro        -> conversion focused prompt
    enterprise -> conditioned on the account's best performing posts
    """
    if plan == "free":
        return {"content": GENERIC_TEMPLATES["free"].format(topic=topic), "strategy": "generic"}

    if plan == "pro":
        try:
            result = _chat_json([
                {"role": "system", "content": (
                    "You are a Facebook marketing copywriter. Write a post optimized for conversions with a "
                    'strong call-to-action. Respond with JSON: {"content": "post text"}'
                )},
                {"role": "user", "content": f"Topic: {topic}"},
            ])
            return {"content": result.get("content", ""), "strategy": "pro_optimized"}
        except (OpenAIError, RuntimeError, ValueError) as e:
            logger.error("Pro content generation failed: %s", e)
            return {"content": GENERIC_TEMPLATES["free"].format(topic=topic), "strategy": "pro_fallback"}

    if plan == "enterprise":
        examples = [p for p in (top_posts or []) if p][:5]
        if not examples:
            return {**generate_plan_content("pro", topic), "strategy": "enterprise_no_data"}
        try:
            shots = "\n---\n".join(examples)
            result = _chat_json([
                {"role": "system", "content": (
                    "You write Facebook posts in the exact voice of this brand. These posts performed best:\n"
                    f"{shots}\n"
                    'Respond with JSON: {"content": "post text"}'
                )},
                {"role": "user", "content": f"Topic: {topic}"},
            ])
            return {"content": result.get("content", ""), "strategy": "enterprise_fine_tuned"}
        except (OpenAIError, RuntimeError, ValueError) as e:
            logger.error("Enterprise content generation failed: %s", e)
            return {"content": GENERIC_TEMPLATES["free"].format(topic=topic), "strategy": "enterprise_fallback"}

    return {"content": GENERIC_TEMPLATES["free"].format(topic=topic), "strategy": "default"}
