import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytz
from sqlalchemy.orm import Session

from pagepilot.config import settings
from pagepilot.logging_setup import log_event
from pagepilot.models import AutomationRun, ContentQueueItem, FacebookPage, ScheduledBoost, User
from pagepilot.services.facebook_graph import FacebookAPIError, GraphClient, page_client
from pagepilot.services.llm import generate_plan_content
from pagepilot.services.notifications import notify
from pagepilot.services.realtime import send_alert

KIND = "auto_content"
BOOST_BUDGET = 20.0
TOP_POST_SCORE = 7

# (weekday, hour) with 0 = Monday
DEFAULT_SLOTS = [(1, 9), (2, 13), (3, 19)]

def with_retry(fn: Callable[[], Any], max_retries: int = 3, sleep: Callable[[float], None] = time.sleep):
    """Calls fn, backing off 2^attempt seconds between failures."""
    for attempt in range(1, max_retries + 1):
        try:
            return fn()
        except Exception as e:
            if attempt == max_retries:
                raise
            log_event("auto_content_retry", level="warning", attempt=attempt, error=str(e))
            sleep(2 ** attempt)

def primary_page(db: Session, user: User) -> FacebookPage | None:
    q = db.query(FacebookPage).filter(FacebookPage.user_id == user.id, FacebookPage.is_active == True)
    page = None
    if user.facebook_page_id:
        page = q.filter(FacebookPage.page_id == user.facebook_page_id).first()
    return page or q.order_by(FacebookPage.id.asc()).first()

def _next_occurrence(weekday: int, hour: int, tz, now: datetime) -> datetime:
    earliest = now + timedelta(hours=1)
    local = earliest.astimezone(tz)
    days_ahead = (weekday - local.weekday()) % 7
    candidate = tz.localize(datetime(local.year, local.month, local.day, hour, 0) + timedelta(days=days_ahead))
    if candidate <= earliest:
        candidate = tz.localize(candidate.replace(tzinfo=None) + timedelta(days=7))
    return candidate.astimezone(pytz.utc)

def _engagement(post: dict) -> int:
    return (post.get("likes") or 0) + 2 * (post.get("comments") or 0) + 3 * (post.get("shares") or 0)

def recommend_time_slots(db: Session, user: User, client: GraphClient | None = None,
                         count: int = 3, now: datetime | None = None) -> list[dict[str, Any]]:
    """
    Ranks weekday/hour buckets by the page's historical engagement. Falls back
    to mid-week defaults when there is no usable history.
    """
    now = now or datetime.now(timezone.utc)
    tz = pytz.timezone(settings.scheduler_timezone)
    page = primary_page(db, user)

    buckets: dict[tuple[int, int], list[int]] = defaultdict(list)
    if page:
        try:
            posts = (client or page_client(page)).get_recent_posts(page.page_id, limit=25)
        except FacebookAPIError as e:
            log_event("time_slot_history_unavailable", level="warning", user_id=user.id, error=e.message)
            posts = []
        for post in posts:
            try:
                created = datetime.strptime(post["created_time"], "%Y-%m-%dT%H:%M:%S%z").astimezone(tz)
            except (KeyError, TypeError, ValueError):
                continue
            buckets[(created.weekday(), created.hour)].append(_engagement(post))

    if buckets:
        ranked = sorted(buckets.items(), key=lambda kv: sum(kv[1]) / len(kv[1]), reverse=True)[:count]
        slots = [(day, hour, round(sum(v) / len(v), 2), "history") for (day, hour), v in ranked]
    else:
        slots = [(day, hour, None, "default") for day, hour in DEFAULT_SLOTS[:count]]

    return [
        {
            "day": day,
            "hour": hour,
            "score": score,
            "source": source,
            "scheduled_for": _next_occurrence(day, hour, tz, now),
        }
        for day, hour, score, source in slots
    ]

def top_posts(db: Session, user: User) -> list[str]:
    rows = db.query(ContentQueueItem.content).filter(
        ContentQueueItem.user_id == user.id,
        ContentQueueItem.performance_score >= TOP_POST_SCORE,
    ).order_by(ContentQueueItem.performance_score.desc()).limit(5).all()
    return [r[0] for r in rows]

def generate_for_user(db: Session, user: User, client: GraphClient | None = None,
                      sleep: Callable[[float], None] = time.sleep) -> dict[str, Any]:
    page = primary_page(db, user)
    if not page:
        raise ValueError("No Facebook page connected")

    topic = user.campaign_goal or "our latest updates"
    generated = with_retry(
        lambda: generate_plan_content(user.subscription_plan or "free", topic, top_posts(db, user)),
        sleep=sleep,
    )
    content = (generated.get("content") or "").strip() or (
        f"Exciting updates coming your way from {page.page_name}! Stay tuned and let us know what you'd like to see."
    )

    client = client or page_client(page)
    slot = recommend_time_slots(db, user, client)[0]
    published = with_retry(
        lambda: client.publish_post(page.page_id, content, scheduled_time=slot["scheduled_for"]),
        sleep=sleep,
    )
    post_id = published["id"]

    db.add(ContentQueueItem(
        user_id=user.id,
        page_id=page.id,
        title=f"Autopilot post ({generated.get('strategy')})",
        content=content,
        status="remote_scheduled",
        scheduled_for=slot["scheduled_for"],
        external_post_id=post_id,
        flags={"auto_generated": True, "strategy": generated.get("strategy")},
    ))
    boost = ScheduledBoost(
        user_id=user.id,
        post_id=post_id,
        date=slot["scheduled_for"].date(),
        budget=BOOST_BUDGET,
        status="scheduled",
    )
    db.add(boost)
    db.commit()

    return {
        "post_id": post_id,
        "scheduled_for": slot["scheduled_for"].isoformat(),
        "strategy": generated.get("strategy"),
        "boost_id": boost.id,
    }

def run_auto_content(db: Session, client: GraphClient | None = None,
                     sleep: Callable[[float], None] = time.sleep) -> dict[str, Any]:
    users = db.query(User).filter(User.autopilot_enabled == True, User.is_active == True).all()
    summary = {"processed": 0, "successful": 0, "failed": 0, "results": []}

    for user in users:
        summary["processed"] += 1
        run = AutomationRun(user_id=user.id, kind=KIND, status="running")
        db.add(run)
        db.commit()
        try:
            details = generate_for_user(db, user, client, sleep=sleep)
            run.status = "success"
            run.executed = True
            run.reason = "Content generated and scheduled"
            run.details = details
            summary["successful"] += 1
            summary["results"].append({"user_id": user.id, "ok": True, **details})
            notify(db, user.id, "Autopilot scheduled a post",
                   f"Scheduled for {details['scheduled_for']} with a boost on the same day.", type="success")
        except Exception as e:
            db.rollback()
            run.status = "failed"
            run.reason = str(e)
            summary["failed"] += 1
            summary["results"].append({"user_id": user.id, "ok": False, "error": str(e)})
            log_event("auto_content_user_failed", level="error", user_id=user.id, error=str(e))
            send_alert(user.id, {"source": KIND, "severity": "high", "message": f"Autopilot could not schedule a post: {e}"})
        run.finished_at = datetime.now(timezone.utc)
        db.commit()

    log_event("auto_content_complete", processed=summary["processed"], successful=summary["successful"])
    return summary

def run_auto_content_job(db_factory: Callable[[], Session]) -> dict[str, Any]:
    db = db_factory()
    try:
        return run_auto_content(db)
    finally:
        db.close()
