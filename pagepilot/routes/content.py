from datetime import datetime, timezone

import pytz
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from pagepilot.db import get_db
from pagepilot.logging_setup import log_event
from pagepilot.models import User, ContentQueueItem, ContentTemplate, PostingSchedule
from pagepilot.schemas import (
    QueueItemCreate, QueueItemUpdate, QueueItemOut,
    TemplateCreate, TemplateOut, RenderTemplateIn,
    ScheduleCreate, ScheduleUpdate, ScheduleOut,
)
from pagepilot.security.auth import require_user
from pagepilot.security.rbac import get_owned_page
from pagepilot.services.content import render_template, upcoming_slots
from pagepilot.services.publisher import publish_queue_item

router = APIRouter(prefix="/api", tags=["content"])

EDITABLE_STATUSES = ("draft", "scheduled", "failed")

def _utcnow():
    return datetime.now(timezone.utc)

def _owned_item(db: Session, user: User, item_id: int) -> ContentQueueItem:
    item = db.get(ContentQueueItem, item_id)
    if not item or item.user_id != user.id:
        raise HTTPException(status_code=404, detail="Content item not found")
    return item

def _check_schedulable(db: Session, user: User, page_id: int | None, scheduled_for: datetime | None):
    if not scheduled_for:
        raise HTTPException(status_code=400, detail="scheduled_for is required to schedule a post")
    # SQLite hands back naive datetimes
    if scheduled_for.tzinfo is None:
        scheduled_for = scheduled_for.replace(tzinfo=timezone.utc)
    if scheduled_for <= _utcnow():
        raise HTTPException(status_code=400, detail="scheduled_for must be in the future")
    if not page_id:
        raise HTTPException(status_code=400, detail="A Facebook page is required to schedule a post")
    get_owned_page(db, user, page_id)

# Content queue

@router.get("/content-queue", response_model=list[QueueItemOut])
def list_queue(
    status: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    q = db.query(ContentQueueItem).filter(ContentQueueItem.user_id == user.id)
    if status:
        q = q.filter(ContentQueueItem.status == status)
    return q.order_by(ContentQueueItem.scheduled_for.desc(), ContentQueueItem.id.desc()).limit(limit).all()

@router.post("/content-queue", response_model=QueueItemOut, status_code=201)
def create_queue_item(payload: QueueItemCreate, user: User = Depends(require_user), db: Session = Depends(get_db)):
    if payload.page_id:
        get_owned_page(db, user, payload.page_id)
    if payload.status == "scheduled":
        _check_schedulable(db, user, payload.page_id, payload.scheduled_for)

    item = ContentQueueItem(user_id=user.id, flags={}, **payload.model_dump())
    db.add(item)
    db.commit()
    db.refresh(item)
    log_event("content_queued", item_id=item.id, status=item.status)
    return item

@router.patch("/content-queue/{item_id}", response_model=QueueItemOut)
def update_queue_item(item_id: int, payload: QueueItemUpdate,
                      user: User = Depends(require_user), db: Session = Depends(get_db)):
    item = _owned_item(db, user, item_id)
    if item.status not in EDITABLE_STATUSES:
        raise HTTPException(status_code=409, detail=f"Cannot edit a post that is {item.status}")

    changes = payload.model_dump(exclude_unset=True)
    new_status = changes.get("status", item.status)
    if new_status not in ("draft", "scheduled", "cancelled"):
        raise HTTPException(status_code=400, detail="status must be draft, scheduled or cancelled")
    if new_status == "scheduled":
        _check_schedulable(db, user, item.page_id, changes.get("scheduled_for", item.scheduled_for))
        # rescheduling a failed item starts the retry budget over
        item.retry_count = 0
        item.failure_reason = None

    for key, value in changes.items():
        setattr(item, key, value)
    db.commit()
    db.refresh(item)
    return item

@router.delete("/content-queue/{item_id}")
def delete_queue_item(item_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    item = _owned_item(db, user, item_id)
    if item.status in ("published", "remote_scheduled"):
        raise HTTPException(status_code=409, detail="Published posts cannot be deleted from the queue")
    db.delete(item)
    db.commit()
    return {"ok": True}

@router.post("/content-queue/{item_id}/publish-now")
def publish_now(item_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    item = _owned_item(db, user, item_id)
    if item.status not in EDITABLE_STATUSES:
        raise HTTPException(status_code=409, detail=f"Cannot publish a post that is {item.status}")
    if item.page_id:
        get_owned_page(db, user, item.page_id)
    result = publish_queue_item(db, item)
    db.refresh(item)
    return {**result, "item": QueueItemOut.model_validate(item).model_dump()}

# Templates

@router.get("/content-templates", response_model=list[TemplateOut])
def list_templates(category: str | None = None, user: User = Depends(require_user), db: Session = Depends(get_db)):
    q = db.query(ContentTemplate).filter(or_(ContentTemplate.user_id == user.id, ContentTemplate.is_public == True))
    if category:
        q = q.filter(ContentTemplate.category == category)
    return q.order_by(ContentTemplate.use_count.desc(), ContentTemplate.id.asc()).all()

@router.post("/content-templates", response_model=TemplateOut, status_code=201)
def create_template(payload: TemplateCreate, user: User = Depends(require_user), db: Session = Depends(get_db)):
    template = ContentTemplate(user_id=user.id, use_count=0, **payload.model_dump())
    db.add(template)
    db.commit()
    db.refresh(template)
    return template

@router.post("/content-templates/{template_id}/render")
def render(template_id: int, payload: RenderTemplateIn,
           user: User = Depends(require_user), db: Session = Depends(get_db)):
    template = db.get(ContentTemplate, template_id)
    if not template or (template.user_id != user.id and not template.is_public):
        raise HTTPException(status_code=404, detail="Template not found")
    content = render_template(template, payload.variables)
    db.commit()
    return {"content": content, "hashtags": template.hashtags or [], "use_count": template.use_count}

# Posting schedules

def _owned_schedule(db: Session, user: User, schedule_id: int) -> PostingSchedule:
    schedule = db.get(PostingSchedule, schedule_id)
    if not schedule or schedule.user_id != user.id:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule

def _check_timezone(name: str):
    try:
        pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise HTTPException(status_code=400, detail=f"Unknown timezone: {name}")

@router.get("/posting-schedules", response_model=list[ScheduleOut])
def list_schedules(user: User = Depends(require_user), db: Session = Depends(get_db)):
    return db.query(PostingSchedule).filter(PostingSchedule.user_id == user.id).order_by(PostingSchedule.id.asc()).all()

@router.post("/posting-schedules", response_model=ScheduleOut, status_code=201)
def create_schedule(payload: ScheduleCreate, user: User = Depends(require_user), db: Session = Depends(get_db)):
    _check_timezone(payload.timezone)
    if payload.page_id:
        get_owned_page(db, user, payload.page_id)
    schedule = PostingSchedule(user_id=user.id, **payload.model_dump())
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    return schedule

@router.patch("/posting-schedules/{schedule_id}", response_model=ScheduleOut)
def update_schedule(schedule_id: int, payload: ScheduleUpdate,
                    user: User = Depends(require_user), db: Session = Depends(get_db)):
    schedule = _owned_schedule(db, user, schedule_id)
    changes = payload.model_dump(exclude_unset=True)
    if "timezone" in changes:
        _check_timezone(changes["timezone"])
    if changes.get("page_id"):
        get_owned_page(db, user, changes["page_id"])
    for key, value in changes.items():
        setattr(schedule, key, value)
    db.commit()
    db.refresh(schedule)
    return schedule

@router.delete("/posting-schedules/{schedule_id}")
def delete_schedule(schedule_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    db.delete(_owned_schedule(db, user, schedule_id))
    db.commit()
    return {"ok": True}

@router.get("/posting-schedules/{schedule_id}/preview")
def preview_schedule(schedule_id: int, hours: int = Query(72, ge=1, le=336),
                     user: User = Depends(require_user), db: Session = Depends(get_db)):
    schedule = _owned_schedule(db, user, schedule_id)
    return {"slots": [s.isoformat() for s in upcoming_slots(schedule, horizon_hours=hours)]}
