import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from pagepilot.config import settings
from pagepilot.logging_setup import log_event
from pagepilot.models import FacebookPage
from pagepilot.services.conversions import track_custom_event
from pagepilot.services.customer_service import record_response, store_interaction, suggest_reply
from pagepilot.services.facebook_graph import FacebookAPIError, page_client
from pagepilot.services.realtime import manager, page_room

WEBHOOK_FIELDS = ["messages", "messaging_postbacks", "feed", "ratings"]

GREETING = "Welcome! Thanks for getting in touch. How can we help you today?"
FALLBACK_REPLY = "Thanks for your message! A member of our team will get back to you shortly."

EVENT_VALUES = {
    "CustomerMessage": 1,
    "CustomerPostback": 2,
    "CustomerComment": 3,
    "CustomerReaction": 1,
    "ContentPublished": 5,
    "LiveVideo": 10,
}

def verify_signature(payload: bytes, signature_header: str | None) -> bool:
    if not settings.facebook_app_secret or not signature_header:
        return False
    if not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(settings.facebook_app_secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header[len("sha256="):])

def handle_verification(mode: str | None, token: str | None, challenge: str | None) -> str | None:
    if mode == "subscribe" and settings.fb_verify_token and token == settings.fb_verify_token:
        log_event("webhook_verified")
        return challenge
    log_event("webhook_verification_failed", level="warning", mode=mode)
    return None

def _find_pages(db: Session, page_id: str) -> list[FacebookPage]:
    """Every active copy of a page; several users may connect the same Facebook page."""
    return db.query(FacebookPage).filter(
        FacebookPage.page_id == page_id,
        FacebookPage.is_active == True,
    ).order_by(FacebookPage.id.asc()).all()

def _track(event_name: str, customer_id: str | None, page_id: str, extra: dict | None = None, value: float | None = None):
    custom_data = {"page_id": page_id, "value": value if value is not None else EVENT_VALUES.get(event_name, 1), **(extra or {})}
    track_custom_event({"external_id": customer_id} if customer_id else {}, event_name, custom_data)

def _reply(page: FacebookPage, recipient_id: str, text: str) -> bool:
    try:
        page_client(page).send_message(recipient_id, text, page_token=page.access_token)
        return True
    except FacebookAPIError as e:
        log_event("webhook_reply_failed", level="error", page_id=page.page_id, error=e.message)
        return False

def handle_message(db: Session, page: FacebookPage, event: dict[str, Any], primary: bool = True):
    sender_id = event.get("sender", {}).get("id")
    message = event.get("message") or {}
    # Echoes are our own outbound messages
    if message.get("is_echo") or not sender_id:
        return

    text = message.get("text")
    if not text:
        text = "[attachment]" if message.get("attachments") else ""
    if not text:
        return

    interaction = store_interaction(db, page, sender_id, text, source="messenger",
                                    meta={"mid": message.get("mid")})
    if not primary:
        return
    _track("CustomerMessage", sender_id, page.page_id)

    reply = suggest_reply(db, interaction)
    if reply["requires_human"]:
        interaction.status = "escalated"
        db.commit()
        manager.publish(page_room(page.id), "human-intervention-required", {
            "interaction_id": interaction.id,
            "suggested_reply": reply["response"],
        })
        _reply(page, sender_id, FALLBACK_REPLY)
        return

    if _reply(page, sender_id, reply["response"]):
        record_response(db, interaction, reply["response"], responded_by="ai")

def handle_postback(db: Session, page: FacebookPage, event: dict[str, Any], primary: bool = True):
    sender_id = event.get("sender", {}).get("id")
    postback = event.get("postback") or {}
    payload = postback.get("payload")
    if not sender_id:
        return

    interaction = store_interaction(db, page, sender_id, postback.get("title") or payload or "postback",
                                    source="postback", meta={"payload": payload})
    if not primary:
        return
    _track("CustomerPostback", sender_id, page.page_id, {"payload": payload})

    if payload == "GET_STARTED":
        if _reply(page, sender_id, GREETING):
            record_response(db, interaction, GREETING, responded_by="ai")

def handle_change(db: Session, page: FacebookPage, change: dict[str, Any], primary: bool = True):
    """Stores interactions for every owner; conversion events are sent once, by the primary copy."""
    def track(*args, **kwargs):
        if primary:
            _track(*args, **kwargs)

    field = change.get("field")
    value = change.get("value") or {}
    verb = value.get("verb")
    item = value.get("item")

    # Page feed delivers comments and reactions as feed items
    if field == "feed" and item == "comment":
        field = "comments"
    elif field == "feed" and item == "reaction":
        field = "reactions"

    if field == "feed":
        if verb in ("add", "edited") or value.get("status"):
            track("ContentPublished", None, page.page_id, {"post_id": value.get("post_id")})
    elif field == "comments":
        if verb == "add" and value.get("message"):
            sender = value.get("from") or {}
            # Comments made by the page itself are ignored
            if sender.get("id") == page.page_id:
                return
            store_interaction(db, page, sender.get("id") or "unknown", value["message"], source="comment",
                              customer_name=sender.get("name"),
                              meta={"comment_id": value.get("comment_id"), "post_id": value.get("post_id")})
            track("CustomerComment", sender.get("id"), page.page_id)
    elif field == "reactions":
        if verb == "add":
            track("CustomerReaction", (value.get("from") or {}).get("id"), page.page_id,
                  {"reaction_type": value.get("reaction_type")})
    elif field == "ratings":
        if verb == "add":
            rating = value.get("rating") or 0
            reviewer = value.get("reviewer_id") or (value.get("from") or {}).get("id")
            text = value.get("review_text") or f"Rated {rating} stars"
            store_interaction(db, page, reviewer or "unknown", text, source="review",
                              customer_name=value.get("reviewer_name"), meta={"rating": rating})
            track("CustomerReview", reviewer, page.page_id, {"rating": rating}, value=rating * 2)
    elif field == "live_videos":
        track("LiveVideo", None, page.page_id, {"status": value.get("status")})
    else:
        log_event("webhook_field_ignored", level="debug", field=field)

def process_webhook_event(db: Session, body: dict[str, Any]) -> int:
    """Dispatches a webhook payload; returns the number of handled events."""
    if body.get("object") != "page":
        log_event("webhook_object_ignored", object_type=body.get("object"))
        return 0

    handled = 0
    for entry in body.get("entry", []):
        pages = _find_pages(db, str(entry.get("id")))
        if not pages:
            log_event("webhook_unknown_page", level="warning", page_id=entry.get("id"))
            continue
        now = datetime.now(timezone.utc)
        for page in pages:
            page.last_webhook_at = now
        db.commit()

        # The first copy replies and tracks; the others only record the interaction
        for event in entry.get("messaging", []):
            log_event("webhook_event_received", page_id=pages[0].page_id, kind="messaging", owners=len(pages))
            for i, page in enumerate(pages):
                if "message" in event:
                    handle_message(db, page, event, primary=i == 0)
                elif "postback" in event:
                    handle_postback(db, page, event, primary=i == 0)
            handled += 1

        for change in entry.get("changes", []):
            log_event("webhook_event_received", page_id=pages[0].page_id, kind=change.get("field"), owners=len(pages))
            for i, page in enumerate(pages):
                handle_change(db, page, change, primary=i == 0)
            handled += 1

    return handled

def run_webhook_event(db_factory, body: dict[str, Any]) -> int:
    db = db_factory()
    try:
        return process_webhook_event(db, body)
    except Exception as e:
        db.rollback()
        log_event("webhook_processing_failed", level="error", error=str(e))
        raise
    finally:
        db.close()

def subscribe_page(db: Session, page: FacebookPage, fields: list[str] | None = None) -> bool:
    fields = fields or WEBHOOK_FIELDS
    ok = page_client(page).subscribe_app(page.page_id, fields, page_token=page.access_token)
    if ok:
        page.webhook_fields = fields
        db.commit()
    log_event("webhook_subscription", page_id=page.page_id, ok=ok)
    return ok
