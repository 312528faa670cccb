import logging
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

from openai import OpenAIError
from sqlalchemy.orm import Session

from pagepilot.models import CustomerInteraction, FacebookPage
from pagepilot.services import llm
from pagepilot.services.realtime import manager

logger = logging.getLogger(__name__)

POSITIVE_WORDS = {
    "love", "great", "amazing", "awesome", "excellent", "thanks", "thank", "happy", "perfect",
    "wonderful", "best", "fantastic", "good", "helpful", "recommend", "appreciate",
}
NEGATIVE_WORDS = {
    "hate", "terrible", "awful", "worst", "bad", "angry", "disappointed", "broken", "useless",
    "horrible", "poor", "problem", "issue", "complaint", "wrong", "never", "scam", "rude",
}
URGENCY_WORDS = {
    "urgent", "asap", "immediately", "emergency", "refund", "cancel",
    "lawyer", "legal", "fraud", "scam", "police", "chargeback",
}
STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "is", "are", "was", "were", "to", "of", "in", "on",
    "for", "with", "my", "your", "i", "you", "it", "this", "that", "me", "we", "our", "be",
    "have", "has", "do", "does", "not", "can", "will", "just", "so", "at", "from", "what",
}

INTENT_PATTERNS = [
    ("complaint", ("not working", "broken", "disappointed", "complaint", "refund", "worst", "terrible")),
    ("request", ("can you", "could you", "please", "i need", "i want", "would like")),
    ("inquiry", ("?", "how", "what", "when", "where", "price", "cost", "available")),
    ("praise", ("love", "great", "amazing", "thank", "awesome", "best")),
]

SENTIMENT_VALUES = {"positive": 1, "neutral": 0, "negative": -1}

def _words(text: str) -> list[str]:
    return re.findall(r"[a-z']+", (text or "").lower())

def urgency_level(score: int) -> str:
    if score >= 80:
        return "critical"
    if score >= 60:
        return "high"
    if score >= 30:
        return "medium"
    return "low"

def quick_sentiment(text: str) -> dict[str, Any]:
    """Lexicon scoring for webhook intake; no network calls."""
    words = _words(text)
    pos = sum(1 for w in words if w in POSITIVE_WORDS)
    neg = sum(1 for w in words if w in NEGATIVE_WORDS)
    urgent = sum(1 for w in words if w in URGENCY_WORDS)

    if pos > neg:
        sentiment = "positive"
    elif neg > pos:
        sentiment = "negative"
    else:
        sentiment = "neutral"

    score = min(100, neg * 15 + urgent * 25 + (10 if (text or "").count("!") >= 2 else 0))
    if sentiment == "positive":
        score = max(0, score - 20)

    return {
        "sentiment": sentiment,
        "urgency": urgency_level(score),
        "urgency_score": score,
    }

def classify_intent(text: str) -> str:
    t = (text or "").lower()
    for intent, markers in INTENT_PATTERNS:
        if any(m in t for m in markers):
            return intent
    return "other"

def extract_keywords(text: str, limit: int = 5) -> list[str]:
    counts = Counter(w for w in _words(text) if w not in STOP_WORDS and len(w) > 2)
    return [w for w, _ in counts.most_common(limit)]

def response_strategy(sentiment: str, urgency: str, intent: str) -> str:
    if urgency in ("critical", "high"):
        return "Escalate to a human agent and respond immediately with empathy."
    if sentiment == "negative":
        return "Acknowledge the issue, apologize and offer a concrete resolution."
    if intent == "inquiry":
        return "Answer the question directly and offer further help."
    if sentiment == "positive":
        return "Thank the customer and encourage them to share their experience."
    return "Respond courteously and ask how you can help."

def analyze_text(text: str, source: str = "message", customer_id: str | None = None,
                 room: str | None = None) -> dict[str, Any]:
    quick = quick_sentiment(text)
    try:
        ai = llm.analyze_sentiment(text)
        sentiment, confidence, emotions = ai["sentiment"], ai["confidence"], ai["emotions"]
    except (OpenAIError, RuntimeError, ValueError) as e:
        logger.warning("Sentiment model unavailable, using lexicon: %s", e)
        sentiment, confidence, emotions = quick["sentiment"], 0.5, []

    urgency_score = quick["urgency_score"]
    if sentiment == "negative":
        urgency_score = min(100, urgency_score + 20)
    urgency = urgency_level(urgency_score)
    intent = classify_intent(text)

    result = {
        "sentiment": sentiment,
        "confidence": confidence,
        "emotions": emotions,
        "urgency": urgency,
        "urgency_score": urgency_score,
        "keywords": extract_keywords(text),
        "intent": intent,
        "response_strategy": response_strategy(sentiment, urgency, intent),
        "source": source,
    }

    if urgency == "critical" and room:
        manager.publish(room, "critical-sentiment", {
            "customer_id": customer_id,
            "text": text,
            "analysis": result,
        })
    return result

def emotional_insights(db: Session, page: FacebookPage, hours: int = 24) -> dict[str, Any]:
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    interactions = db.query(CustomerInteraction).filter(
        CustomerInteraction.page_id == page.id,
        CustomerInteraction.created_at >= since,
    ).all()

    if not interactions:
        return {
            "overall_sentiment": 0,
            "total_interactions": 0,
            "emotional_health": "stable",
            "insights": ["Insufficient data for emotional analysis"],
            "recommendations": ["Encourage more customer interaction to gather insights"],
        }

    distribution = Counter(i.sentiment or "neutral" for i in interactions)
    overall = sum(SENTIMENT_VALUES.get(i.sentiment or "neutral", 0) for i in interactions) / len(interactions)
    critical = sum(1 for i in interactions if (i.urgency_score or 0) >= 80)
    high = sum(1 for i in interactions if 60 <= (i.urgency_score or 0) < 80)
    responded = sum(1 for i in interactions if i.status == "responded")
    response_rate = responded / len(interactions)

    if overall > 0.3 and critical == 0:
        health = "excellent"
    elif overall < -0.2 or critical > 0:
        health = "concerning"
    else:
        health = "stable"

    insights = []
    recommendations = []
    if distribution.get("negative", 0) > len(interactions) * 0.3:
        insights.append("A high share of recent messages are negative")
        recommendations.append("Review recent negative conversations for a common root cause")
    if critical:
        insights.append(f"{critical} critical-urgency conversations in the last {hours}h")
        recommendations.append("Assign critical conversations to senior agents immediately")
    if response_rate < 0.8:
        insights.append(f"Only {response_rate:.0%} of conversations have been answered")
        recommendations.append("Enable AI auto-replies or add agents during peak hours")
    if not insights:
        insights.append("Customer sentiment is steady")
        recommendations.append("Keep current response practices")

    return {
        "overall_sentiment": round(overall, 2),
        "total_interactions": len(interactions),
        "distribution": dict(distribution),
        "critical_count": critical,
        "high_count": high,
        "response_rate": round(response_rate, 2),
        "emotional_health": health,
        "insights": insights,
        "recommendations": recommendations,
    }
