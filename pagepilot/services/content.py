import logging
import re
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable

import pytz
from openai import OpenAIError
from sqlalchemy.orm import Session

from pagepilot.logging_setup import log_event
from pagepilot.models import ContentQueueItem, ContentTemplate, PostingSchedule, User
from pagepilot.services import llm

logger = logging.getLogger(__name__)

CONTENT_TOPICS = {
    "promotional": "our products, services and current offers",
    "educational": "useful tips and insights for our audience",
    "engagement": "a question or poll that sparks conversation with our community",
}

PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

def render_template(template: ContentTemplate, variables: dict[str, Any]) -> str:
    """Fills {placeholders}; unknown placeholders are left as-is."""
    def _sub(match):
        key = match.group(1)
        return str(variables[key]) if key in variables else match.group(0)

    text = PLACEHOLDER_RE.sub(_sub, template.content)
    template.use_count = (template.use_count or 0) + 1
    return text

def topic_for(content_type: str | None, index: int = 0) -> str:
    if content_type in CONTENT_TOPICS:
        return CONTENT_TOPICS[content_type]
    # mixed rotates through the other types
    keys = list(CONTENT_TOPICS)
    return CONTENT_TOPICS[keys[index % len(keys)]]

def upcoming_slots(schedule: PostingSchedule, now: datetime | None = None, horizon_hours: int = 24) -> list[datetime]:
    """
    Next occurrences of the schedule's time slots within the horizon, in UTC.
    Slots without a "day" repeat daily; "day" is a weekday, 0 = Monday.
    """
    now = now or datetime.now(timezone.utc)
    tz = pytz.timezone(schedule.timezone or "UTC")
    end = now + timedelta(hours=horizon_hours)
    local_today = now.astimezone(tz).date()

    slots = set()
    for slot in schedule.time_slots or []:
        try:
            hour = int(slot.get("hour", 9))
            minute = int(slot.get("minute", 0))
        except (TypeError, ValueError, AttributeError):
            logger.warning("Skipping malformed slot %r on schedule %s", slot, schedule.id)
            continue
        day = slot.get("day")
        for offset in range(horizon_hours // 24 + 2):
            candidate = local_today + timedelta(days=offset)
            if day is not None and candidate.weekday() != int(day):
                continue
            at = tz.localize(datetime.combine(candidate, time(hour, minute))).astimezone(pytz.utc)
            if now < at <= end:
                slots.add(at)
    return sorted(slots)

def _slot_taken(db: Session, user_id: int, slot: datetime) -> bool:
    return db.query(ContentQueueItem).filter(
        ContentQueueItem.user_id == user_id,
        ContentQueueItem.status.in_(["scheduled", "publishing", "published"]),
        ContentQueueItem.scheduled_for >= slot - timedelta(minutes=1),
        ContentQueueItem.scheduled_for <= slot + timedelta(minutes=1),
    ).first() is not None

def generate_scheduled_content(db: Session, now: datetime | None = None) -> int:
    """Fills empty upcoming slots of auto-generating posting schedules."""
    schedules = db.query(PostingSchedule).filter(
        PostingSchedule.is_active == True,
        PostingSchedule.auto_generate == True,
    ).all()

    created = 0
    for schedule in schedules:
        user = db.get(User, schedule.user_id)
        for index, slot in enumerate(upcoming_slots(schedule, now)):
            if _slot_taken(db, schedule.user_id, slot):
                continue
            topic = topic_for(schedule.content_type, index)
            try:
                post = llm.generate_facebook_post(
                    topic,
                    business_context=user.campaign_goal if user else None,
                    content_type=schedule.content_type or "mixed",
                )
            except (OpenAIError, RuntimeError, ValueError) as e:
                log_event("schedule_autogen_failed", level="warning", schedule_id=schedule.id, error=str(e))
                continue
            if not post["content"]:
                continue

            db.add(ContentQueueItem(
                user_id=schedule.user_id,
                page_id=schedule.page_id,
                title=f"{schedule.name} - {slot:%Y-%m-%d %H:%M} UTC",
                content=post["content"],
                hashtags=post["hashtags"],
                seo_score=post["seo_score"],
                estimated_reach=post["estimated_reach"],
                status="scheduled",
                scheduled_for=slot,
                flags={"auto_generated": True, "schedule_id": schedule.id},
            ))
            db.commit()
            created += 1

    if created:
        log_event("schedule_autogen_complete", created=created)
    return created

def run_generate_scheduled_content(db_factory: Callable[[], Session]) -> int:
    db = db_factory()
    try:
        return generate_scheduled_content(db)
    finally:
        db.close()
