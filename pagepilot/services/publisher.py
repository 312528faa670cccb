# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from pagepilot.config import settings
from pagepilot.logging_setup import log_event
from pagepilot.models import ContentQueueItem, FacebookPage, RestrictionAlert
from pagepilot.services.facebook_graph import FacebookAPIError, page_client
from pagepilot.services.llm import check_policy_compliance
from pagepilot.services.notifications import notify
from pagepilot.services.policy import keyword_flags
from pagepilot.services.realtime import manager, user_room, send_restriction_alert

def compose_message(item: ContentQueueItem) -> str:
    message = item.content or ""
    if item.hashtags:
        message += "\n\n" + " ".join(item.hashtags)
    return message

def _handle_failure(db: Session, item: ContentQueueItem, error: str) -> dict:
    item.retry_count = (item.retry_count or 0) + 1
    item.failure_reason = error

    if item.retry_count < settings.publish_max_retries:
        item.status = "scheduled"
        item.scheduled_for = datetime.now(timezone.utc) + timedelta(minutes=settings.publish_retry_delay_minutes)
        db.commit()
        log_event("fb_queue_publish_retry", level="warning", item_id=item.id, attempts=item.retry_count, error=error)
        return {"ok": False, "error": error, "will_retry": True}

    item.status = "failed"
    db.commit()
    log_event("fb_queue_publish_fail", level="error", item_id=item.id, attempts=item.retry_count, error=error)
    manager.publish(user_room(item.user_id), "post-publish-failed", {
        "id": item.id,
        "title": item.title,
        "error": error,
    })
    notify(db, item.user_id, "Post failed to publish", f"{item.title or 'Scheduled post'}: {error}",
           type="error", priority="high", meta={"content_id": item.id})
    return {"ok": False, "error": error, "will_retry": False}

def publish_queue_item(db: Session, item: ContentQueueItem) -> dict:
    page = db.get(FacebookPage, item.page_id) if item.page_id else None
    if not page or not page.is_active:
        item.status = "failed"
        item.failure_reason = "No active Facebook page linked to this post"
        db.commit()
        return {"ok": False, "error": item.failure_reason, "will_retry": False}

    message = compose_message(item)
    item.flags = {**(item.flags or {}), "policy": keyword_flags(message)}

    compliance = check_policy_compliance(message)
    item.flags = {**item.flags, "compliance": compliance}
    if compliance["risk_level"] == "critical":
        item.status = "failed"
        item.failure_reason = "Policy violation: " + "; ".join(compliance["violations"] or ["critical risk"])
        alert = RestrictionAlert(
            user_id=item.user_id,
            page_id=page.id,
            alert_type="content_policy",
            severity="critical",
            message=f"Scheduled post blocked before publishing: {item.title or item.id}",
            ai_suggestion="; ".join(compliance["suggestions"]) or None,
        )
        db.add(alert)
        db.commit()
        log_event("fb_queue_policy_block", level="warning", item_id=item.id, violations=compliance["violations"])
        send_restriction_alert(page.id, {"id": alert.id, "severity": alert.severity, "message": alert.message})
        notify(db, item.user_id, "Post blocked by policy check", item.failure_reason,
               type="warning", priority="high", meta={"content_id": item.id})
        return {"ok": False, "error": item.failure_reason, "will_retry": False}

    item.status = "publishing"
    db.commit()

    try:
        result = page_client(page).publish_post(page.page_id, message)
    except FacebookAPIError as e:
        return _handle_failure(db, item, e.message)

    item.status = "published"
    item.published_at = datetime.now(timezone.utc)
    item.external_post_id = result.get("id")
    item.failure_reason = None
    db.commit()

    manager.publish(user_room(item.user_id), "post-published", {
        "id": item.id,
        "title": item.title,
        "external_post_id": item.external_post_id,
    })
    notify(db, item.user_id, "Post published", item.title or "Your scheduled post is live",
           type="success", meta={"content_id": item.id, "post_id": item.external_post_id})
    return {"ok": True, "remote_id": item.external_post_id}

def process_content_queue(db_factory: Callable[[], Session]) -> int:
    """
    Publishes every scheduled queue item that is due.
    Runs on an interval from the scheduler.
    """
    db = db_factory()
    try:
        now = datetime.now(timezone.utc)
        stmt = (
            select(ContentQueueItem)
            .where(ContentQueueItem.status == "scheduled")
            .where(ContentQueueItem.scheduled_for <= now)
            .order_by(ContentQueueItem.scheduled_for.asc())
        )
        items = db.execute(stmt).scalars().all()
        if not items:
            return 0

        published = 0
        for item in items:
            result = publish_queue_item(db, item)
            if result.get("ok"):
                published += 1

        log_event("fb_queue_processed", due=len(items), published=published)
        return published
    finally:
        db.close()
