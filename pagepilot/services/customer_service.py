from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from pagepilot.logging_setup import log_event
from pagepilot.models import CustomerInteraction, Employee, FacebookPage
from pagepilot.services.llm import generate_customer_service_response
from pagepilot.services.realtime import manager, page_room
from pagepilot.services.sentiment import quick_sentiment

LOW_CONFIDENCE = 0.7
HISTORY_SIZE = 3

def store_interaction(db: Session, page: FacebookPage, customer_id: str, message: str, *,
                      source: str = "messenger", customer_name: str | None = None,
                      meta: dict | None = None) -> CustomerInteraction:
    quick = quick_sentiment(message)
    interaction = CustomerInteraction(
        page_id=page.id,
        customer_id=customer_id,
        customer_name=customer_name,
        message=message,
        source=source,
        sentiment=quick["sentiment"],
        urgency_score=quick["urgency_score"],
        status="pending",
        meta=meta,
    )
    db.add(interaction)
    db.commit()
    manager.publish(page_room(page.id), "new-customer-message", serialize(interaction))
    return interaction

def serialize(interaction: CustomerInteraction) -> dict[str, Any]:
    return {
        "id": interaction.id,
        "page_id": interaction.page_id,
        "customer_id": interaction.customer_id,
        "customer_name": interaction.customer_name,
        "message": interaction.message,
        "response": interaction.response,
        "status": interaction.status,
        "sentiment": interaction.sentiment,
        "urgency_score": interaction.urgency_score,
        "source": interaction.source,
    }

def customer_history(db: Session, interaction: CustomerInteraction) -> list[str]:
    rows = db.query(CustomerInteraction).filter(
        CustomerInteraction.page_id == interaction.page_id,
        CustomerInteraction.customer_id == interaction.customer_id,
        CustomerInteraction.id != interaction.id,
    ).order_by(CustomerInteraction.id.desc()).limit(HISTORY_SIZE).all()

    history = []
    for row in reversed(rows):
        history.append(f"Customer: {row.message}")
        if row.response:
            history.append(f"Business: {row.response}")
    return history

def suggest_reply(db: Session, interaction: CustomerInteraction) -> dict[str, Any]:
    page = db.get(FacebookPage, interaction.page_id)
    reply = generate_customer_service_response(
        interaction.message,
        customer_history(db, interaction),
        business_context=page.page_name if page else None,
    )
    interaction.ai_suggested_reply = reply["response"]
    db.commit()
    return reply

def _elapsed_seconds(interaction: CustomerInteraction) -> int | None:
    if not interaction.created_at:
        return None
    created = interaction.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return max(0, int((datetime.now(timezone.utc) - created).total_seconds()))

def record_response(db: Session, interaction: CustomerInteraction, response: str,
                    employee: Employee | None = None, response_time: int | None = None,
                    responded_by: str | None = None) -> CustomerInteraction:
    if response_time is None:
        response_time = _elapsed_seconds(interaction)

    interaction.response = response
    interaction.status = "responded"
    interaction.response_time = response_time
    interaction.responded_by = responded_by or (str(employee.id) if employee else None)
    interaction.is_auto_response = interaction.responded_by == "ai"

    if employee and response_time is not None:
        total = employee.total_responses or 0
        employee.avg_response_time = ((employee.avg_response_time or 0) * total + response_time) / (total + 1)
        employee.total_responses = total + 1
        employee.last_active = datetime.now(timezone.utc)

    db.commit()
    manager.publish(page_room(interaction.page_id), "interaction-updated", serialize(interaction))
    return interaction

def run_ai_fallback(db_factory: Callable[[], Session], interaction_id: int) -> str:
    """
    Answers a customer message that no agent picked up in time.
    Returns the outcome emitted to the page room.
    """
    db = db_factory()
    try:
        interaction = db.get(CustomerInteraction, interaction_id)
        if not interaction or interaction.status != "pending":
            return "skipped"

        room = page_room(interaction.page_id)
        try:
            reply = suggest_reply(db, interaction)
        except Exception as e:
            log_event("ai_fallback_failed", level="error", interaction_id=interaction_id, error=str(e))
            manager.publish(room, "ai-response-error", {"interaction_id": interaction_id, "error": str(e)})
            return "ai-response-error"

        if reply["requires_human"]:
            interaction.status = "escalated"
            db.commit()
            manager.publish(room, "human-intervention-required", {
                "interaction_id": interaction_id,
                "suggested_reply": reply["response"],
            })
            return "human-intervention-required"

        record_response(db, interaction, reply["response"], responded_by="ai")
        manager.publish(room, "ai-response-generated", {
            "interaction_id": interaction_id,
            "response": reply["response"],
            "confidence": reply["confidence"],
        })
        if reply["confidence"] < LOW_CONFIDENCE:
            manager.publish(room, "low-confidence-response", {
                "interaction_id": interaction_id,
                "confidence": reply["confidence"],
            })
        return "ai-response-generated"
    finally:
        db.close()
