from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from pagepilot.config import settings
from pagepilot.logging_setup import log_event
from pagepilot.models import AutomationRun
from pagepilot.services.facebook_graph import GraphClient
from pagepilot.services.llm import generate_short_post
from pagepilot.services.optimizer import fetch_performance_scores

KIND = "auto_post"

def pick_topic(average_score: float) -> str:
    if average_score < 20:
        return "audience re-engagement"
    if average_score < 40:
        return "content optimization"
    return "engagement improvement"

def _record(db: Session, result: dict[str, Any], status: str) -> AutomationRun:
    run = AutomationRun(
        kind=KIND,
        status=status,
        executed=result["executed"],
        reason=result["reason"],
        details={
            "post_data": result.get("post_data"),
            "performance_scores": result.get("performance_scores"),
            "average_score": result.get("average_score"),
        },
        finished_at=datetime.now(timezone.utc),
    )
    db.add(run)
    db.commit()
    return run

def _publish(client: GraphClient, page_id: str, topic: str) -> dict[str, Any]:
    message = generate_short_post(topic)
    published = client.publish_post(page_id, message)
    return {"id": published.get("id"), "message": message, "topic": topic}

def run_auto_facebook_post(db: Session, client: GraphClient | None = None) -> dict[str, Any]:
    """
    Publishes a fresh post when recent page performance drops below
    MIN_SCORE_THRESHOLD. Never raises; failures come back as executed=False.
    """
    result: dict[str, Any] = {
        "executed": False,
        "reason": "",
        "post_data": None,
        "performance_scores": [],
        "average_score": None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if not settings.auto_post_enabled:
        result["reason"] = "Auto-posting is disabled (AUTO_POST_ENABLED=false)"
        _record(db, result, "skipped")
        return result

    page_id = settings.facebook_page_id
    if not page_id:
        result["reason"] = "FACEBOOK_PAGE_ID not configured"
        _record(db, result, "skipped")
        return result

    threshold = settings.min_score_threshold
    client = client or GraphClient(settings.page_token)

    try:
        scores = fetch_performance_scores(client, page_id)
        result["performance_scores"] = scores

        if not scores:
            result["post_data"] = _publish(client, page_id, "engagement boost")
            result["executed"] = True
            result["reason"] = "No recent posts found, published initial engagement post"
        else:
            average = sum(s["score"] for s in scores) / len(scores)
            result["average_score"] = round(average, 2)
            below = [s for s in scores if s["score"] < threshold]

            if below or average < threshold:
                result["post_data"] = _publish(client, page_id, pick_topic(average))
                result["executed"] = True
                result["reason"] = (
                    f"{len(below)} of {len(scores)} posts below threshold {threshold:g} "
                    f"(average {average:.1f})"
                )
            else:
                result["reason"] = f"Performance above threshold (average {average:.1f}), no action needed"
    except Exception as e:
        result["executed"] = False
        result["reason"] = f"Auto-post failed: {e}"
        log_event("auto_post_failed", level="error", error=str(e))
        _record(db, result, "failed")
        return result

    log_event("auto_post_complete", executed=result["executed"], average_score=result["average_score"])
    _record(db, result, "success" if result["executed"] else "skipped")
    return result

def run_auto_post_job(db_factory: Callable[[], Session]) -> dict[str, Any]:
    db = db_factory()
    try:
        return run_auto_facebook_post(db)
    finally:
        db.close()

def get_auto_post_status(db: Session, next_run: datetime | None = None) -> dict[str, Any]:
    last = db.query(AutomationRun).filter(AutomationRun.kind == KIND).order_by(AutomationRun.id.desc()).first()
    return {
        "enabled": settings.auto_post_enabled,
        "threshold": settings.min_score_threshold,
        "schedule": settings.auto_post_cron,
        "next_run": next_run.isoformat() if next_run else None,
        "last_run": {
            "executed": last.executed,
            "status": last.status,
            "reason": last.reason,
            "finished_at": last.finished_at.isoformat() if last.finished_at else None,
        } if last else None,
    }
