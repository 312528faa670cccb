import base64
import binascii
import hashlib
import hmac
import json
import secrets
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from pagepilot.config import settings
from pagepilot.logging_setup import log_event
from pagepilot.models import (
    AIRecommendation, AISuggestionFeedback, AutomationRun, ContentQueueItem, ContentTemplate, CustomerInteraction,
    DataDeletionRecord, Employee, Notification, PostingSchedule, RestrictionAlert,
    ScheduledBoost, User,
)

def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))

def parse_signed_request(signed_request: str) -> dict[str, Any]:
    if not settings.facebook_app_secret:
        raise ValueError("FACEBOOK_APP_SECRET not configured")
    if not signed_request or signed_request.count(".") != 1:
        raise ValueError("Malformed signed_request")

    encoded_sig, payload = signed_request.split(".", 1)
    try:
        sig = _b64url_decode(encoded_sig)
        data = json.loads(_b64url_decode(payload))
    except (binascii.Error, ValueError) as e:
        raise ValueError("Malformed signed_request") from e

    expected = hmac.new(settings.facebook_app_secret.encode(), payload.encode(), hashlib.sha256).digest()
    if not hmac.compare_digest(sig, expected):
        raise ValueError("Invalid signed_request signature")
    return data

def status_url_for(code: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/api/facebook/data-deletion/status/{code}"

def delete_user_data(db: Session, user: User) -> None:
    page_ids = [p.id for p in user.pages]
    if page_ids:
        interaction_ids = select(CustomerInteraction.id).where(CustomerInteraction.page_id.in_(page_ids))
        db.query(AISuggestionFeedback).filter(AISuggestionFeedback.interaction_id.in_(interaction_ids)).delete(synchronize_session=False)
        db.query(CustomerInteraction).filter(CustomerInteraction.page_id.in_(page_ids)).delete(synchronize_session=False)
    for model in (ContentQueueItem, ContentTemplate, PostingSchedule, ScheduledBoost, AIRecommendation,
                  Notification, AutomationRun, RestrictionAlert, Employee):
        db.query(model).filter(model.user_id == user.id).delete(synchronize_session=False)
    db.delete(user)

def process_deletion_request(db: Session, signed_request: str) -> dict[str, str]:
    data = parse_signed_request(signed_request)
    fb_user_id = str(data.get("user_id") or "")
    if not fb_user_id:
        raise ValueError("signed_request has no user_id")

    users = db.query(User).filter(User.facebook_user_id == fb_user_id).all()
    for user in users:
        delete_user_data(db, user)

    code = secrets.token_hex(16)
    url = status_url_for(code)
    db.add(DataDeletionRecord(facebook_user_id=fb_user_id, confirmation_code=code, status_url=url, status="completed"))
    db.commit()

    log_event("fb_data_deletion", facebook_user_id=fb_user_id, users_deleted=len(users))
    return {"url": url, "confirmation_code": code}

def get_deletion_status(db: Session, code: str) -> dict[str, Any]:
    record = db.query(DataDeletionRecord).filter(DataDeletionRecord.confirmation_code == code).first()
    if not record:
        return {"status": "not_found"}
    return {
        "status": record.status,
        "confirmation_code": record.confirmation_code,
        "deleted_at": record.deleted_at.isoformat() if record.deleted_at else None,
    }
