"""
Periodic health checks for connected pages.

Each run reads the page from Graph, tracks consecutive failures on the page
row and raises a RestrictionAlert once the failure threshold is reached or a
restriction is detected. An open alert of the same type is never duplicated.
"""
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from pagepilot.config import settings
from pagepilot.logging_setup import log_event
from pagepilot.models import FacebookPage, RestrictionAlert
from pagepilot.services.facebook_graph import FacebookAPIError, GraphClient, page_client
from pagepilot.services.notifications import notify
from pagepilot.services.realtime import send_restriction_alert

FAILING = ("error", "restricted")
REACH_DROP_RATIO = 0.5

SUGGESTIONS = {
    "page_access_denied": "Reconnect the page from Facebook settings and confirm the page is not restricted in Page Quality.",
    "page_health_failures": "Check that the page token is still valid and the page is published, then reconnect if needed.",
}

def _reach_dropped(client: GraphClient, page_id: str) -> bool:
    try:
        insights = client.get_page_insights(page_id, ["page_reach"], days=2)
    except FacebookAPIError as e:
        log_event("page_health_insights_unavailable", level="warning", page_id=page_id, error=e.message)
        return False
    for metric in insights:
        if metric.get("name") != "page_reach":
            continue
        values = [v.get("value") or 0 for v in metric.get("values") or []]
        if len(values) >= 2 and values[-2] > 0:
            return values[-1] < values[-2] * REACH_DROP_RATIO
    return False

def check_page(page: FacebookPage, client: GraphClient | None = None) -> dict[str, Any]:
    client = client or page_client(page)
    result: dict[str, Any] = {"status": "healthy", "issues": [], "restrictions": []}

    try:
        info = client.get_page_info(page.page_id)
    except FacebookAPIError as e:
        if e.status_code == 403:
            result["status"] = "restricted"
            result["restrictions"].append({
                "type": "page_access_denied",
                "severity": "critical",
                "message": "Page access denied - possible restriction or token revocation",
            })
        else:
            result["status"] = "error"
        result["issues"].append(e.message)
        return result

    if info.get("is_published") is False:
        result["status"] = "warning"
        result["issues"].append("Page is not published")
    if _reach_dropped(client, page.page_id):
        result["status"] = "warning"
        result["issues"].append("Significant drop in page reach detected")
    return result

def _open_alert(db: Session, page: FacebookPage, alert_type: str) -> RestrictionAlert | None:
    return db.query(RestrictionAlert).filter(
        RestrictionAlert.page_id == page.id,
        RestrictionAlert.alert_type == alert_type,
        RestrictionAlert.is_resolved == False,
    ).first()

def _raise_alert(db: Session, page: FacebookPage, alert_type: str, severity: str, message: str) -> RestrictionAlert | None:
    if _open_alert(db, page, alert_type):
        return None
    alert = RestrictionAlert(
        user_id=page.user_id,
        page_id=page.id,
        alert_type=alert_type,
        severity=severity,
        message=message,
        ai_suggestion=SUGGESTIONS.get(alert_type),
    )
    db.add(alert)
    db.commit()
    send_restriction_alert(page.id, {
        "id": alert.id,
        "page_id": page.id,
        "alert_type": alert_type,
        "severity": severity,
        "message": message,
    })
    notify(db, page.user_id, f"{page.page_name}: {message}", alert.ai_suggestion,
           type="error", priority="high", meta={"alert_id": alert.id, "page_id": page.id})
    log_event("page_health_alert", level="warning", page_id=page.page_id, alert_type=alert_type, severity=severity)
    return alert

def record_check(db: Session, page: FacebookPage, result: dict[str, Any],
                 threshold: int | None = None) -> list[RestrictionAlert]:
    threshold = threshold or settings.page_health_failure_threshold
    page.health_status = result["status"]
    page.last_health_check_at = datetime.now(timezone.utc)
    page.health_failures = (page.health_failures or 0) + 1 if result["status"] in FAILING else 0
    db.commit()

    alerts = []
    for restriction in result["restrictions"]:
        alert = _raise_alert(db, page, restriction["type"], restriction["severity"], restriction["message"])
        if alert:
            alerts.append(alert)
    if page.health_failures >= threshold:
        alert = _raise_alert(
            db, page, "page_health_failures", "high",
            f"Page failed {page.health_failures} consecutive health checks",
        )
        if alert:
            alerts.append(alert)
    return alerts

def run_page_health_checks(db: Session, client_factory: Callable[[FacebookPage], GraphClient] = page_client) -> dict[str, Any]:
    pages = db.query(FacebookPage).filter(FacebookPage.is_active == True).all()
    summary: dict[str, Any] = {"checked": 0, "failing": 0, "alerts": 0}
    for page in pages:
        result = check_page(page, client_factory(page))
        alerts = record_check(db, page, result)
        summary["checked"] += 1
        summary["failing"] += int(result["status"] in FAILING)
        summary["alerts"] += len(alerts)
    log_event("page_health_complete", **summary)
    return summary

def run_page_health_job(db_factory: Callable[[], Session]) -> dict[str, Any]:
    db = db_factory()
    try:
        return run_page_health_checks(db)
    finally:
        db.close()
