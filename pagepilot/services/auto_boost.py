from datetime import date, datetime, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from pagepilot.logging_setup import log_event
from pagepilot.models import AutomationRun, ScheduledBoost, User
from pagepilot.services.facebook_graph import FacebookAPIError
from pagepilot.services.marketing import ad_credentials, boost_post
from pagepilot.services.notifications import notify

KIND = "auto_boost"
DEFAULT_BUDGET = 10.0
DEFAULT_DURATION_DAYS = 3

def run_auto_boost(db: Session, today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    boosts = db.query(ScheduledBoost).filter(
        ScheduledBoost.date == today,
        ScheduledBoost.status == "scheduled",
    ).all()

    successful = 0
    failed = 0
    for boost in boosts:
        user = db.get(User, boost.user_id)
        try:
            result = boost_post(
                boost.post_id,
                boost.budget or DEFAULT_BUDGET,
                boost.duration_days or DEFAULT_DURATION_DAYS,
                **ad_credentials(db, user),
            )
        except (FacebookAPIError, KeyError) as e:
            boost.status = "failed"
            boost.last_error = getattr(e, "message", None) or str(e)
            failed += 1
            db.commit()
            log_event("auto_boost_failed", level="error", boost_id=boost.id, post_id=boost.post_id, error=boost.last_error)
            continue

        boost.status = "active"
        boost.campaign_id = result["campaign_id"]
        boost.last_error = None
        successful += 1
        db.commit()
        notify(db, boost.user_id, "Boost campaign created",
               f"Post {boost.post_id} boosted with ${result['total_budget']:.2f} over {result['duration_days']} days. "
               "The campaign is paused until you activate it.",
               type="success", meta={"campaign_id": result["campaign_id"]})

    total = len(boosts)
    summary = {
        "date": today.isoformat(),
        "total": total,
        "successful": successful,
        "failed": failed,
        "success_rate": round(successful / total * 100, 1) if total else 0.0,
    }

    db.add(AutomationRun(
        kind=KIND,
        status="success" if failed == 0 else "failed",
        executed=successful > 0,
        reason=f"{successful}/{total} boosts created",
        details=summary,
        finished_at=datetime.now(timezone.utc),
    ))
    db.commit()
    log_event("auto_boost_complete", **summary)
    return summary

def run_auto_boost_job(db_factory: Callable[[], Session]) -> dict[str, Any]:
    db = db_factory()
    try:
        return run_auto_boost(db)
    finally:
        db.close()
