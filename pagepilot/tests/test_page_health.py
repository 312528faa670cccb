from unittest.mock import MagicMock, patch

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from pagepilot.db import SessionLocal
from pagepilot.models import FacebookPage, Notification, RestrictionAlert
from pagepilot.services import page_health
from pagepilot.services.facebook_graph import FacebookAPIError
from pagepilot.services.scheduler import register_jobs

def healthy_client(reach=(100, 90)):
    client = MagicMock()
    client.get_page_info.return_value = {"id": "1234567890123", "name": "Corner Cafe", "is_published": True}
    client.get_page_insights.return_value = [{"name": "page_reach", "values": [{"value": v} for v in reach]}]
    return client

def failing_client(status_code=500):
    client = MagicMock()
    client.get_page_info.side_effect = FacebookAPIError("Service temporarily unavailable", status_code=status_code)
    return client

@pytest.fixture
def sent():
    with patch("pagepilot.services.page_health.send_restriction_alert") as send:
        yield send

def test_check_page_states(page):
    assert page_health.check_page(page, healthy_client())["status"] == "healthy"

    unpublished = healthy_client()
    unpublished.get_page_info.return_value = {"id": page.page_id, "is_published": False}
    result = page_health.check_page(page, unpublished)
    assert result["status"] == "warning"
    assert result["issues"] == ["Page is not published"]

    dropped = page_health.check_page(page, healthy_client(reach=(1000, 300)))
    assert dropped["status"] == "warning"
    assert dropped["issues"] == ["Significant drop in page reach detected"]

    assert page_health.check_page(page, failing_client())["status"] == "error"

    denied = page_health.check_page(page, failing_client(403))
    assert denied["status"] == "restricted"
    assert denied["restrictions"][0]["type"] == "page_access_denied"

def test_missing_insights_do_not_fail_the_check(page):
    client = healthy_client()
    client.get_page_insights.side_effect = FacebookAPIError("(#100) Unsupported metric")
    assert page_health.check_page(page, client)["status"] == "healthy"

def test_alert_after_three_consecutive_failures(db, page, sent):
    client = failing_client()
    for _ in range(2):
        page_health.run_page_health_checks(db, client_factory=lambda p: client)
    assert db.query(RestrictionAlert).count() == 0
    sent.assert_not_called()

    summary = page_health.run_page_health_checks(db, client_factory=lambda p: client)
    assert summary == {"checked": 1, "failing": 1, "alerts": 1}
    # a fourth failure does not duplicate the open alert
    page_health.run_page_health_checks(db, client_factory=lambda p: client)

    alert = db.query(RestrictionAlert).one()
    assert alert.alert_type == "page_health_failures"
    assert alert.severity == "high"
    assert alert.page_id == page.id and alert.user_id == page.user_id
    sent.assert_called_once()
    room_page_id, payload = sent.call_args[0]
    assert room_page_id == page.id
    assert payload["alert_type"] == "page_health_failures"
    assert db.query(Notification).filter(Notification.user_id == page.user_id).count() == 1

    db.expire_all()
    stored = db.get(FacebookPage, page.id)
    assert stored.health_failures == 4
    assert stored.health_status == "error"

def test_success_resets_failure_count(db, page, sent):
    bad, good = failing_client(), healthy_client()
    for client in (bad, bad, good, bad, bad):
        page_health.run_page_health_checks(db, client_factory=lambda p, c=client: c)

    db.expire_all()
    assert db.get(FacebookPage, page.id).health_failures == 2
    assert db.query(RestrictionAlert).count() == 0
    sent.assert_not_called()

def test_access_denied_alerts_immediately(db, page, sent):
    page_health.run_page_health_checks(db, client_factory=lambda p: failing_client(403))

    alert = db.query(RestrictionAlert).one()
    assert alert.alert_type == "page_access_denied"
    assert alert.severity == "critical"
    assert alert.ai_suggestion == page_health.SUGGESTIONS["page_access_denied"]
    assert sent.call_args[0][1]["severity"] == "critical"
    db.expire_all()
    assert db.get(FacebookPage, page.id).health_status == "restricted"

def test_resolved_alert_can_fire_again(db, page, sent):
    client = failing_client(403)
    page_health.run_page_health_checks(db, client_factory=lambda p: client)
    alert = db.query(RestrictionAlert).one()
    alert.is_resolved = True
    db.commit()

    page_health.run_page_health_checks(db, client_factory=lambda p: client)
    assert db.query(RestrictionAlert).filter(RestrictionAlert.is_resolved == False).count() == 1
    assert sent.call_count == 2

def test_inactive_pages_are_skipped(db, page):
    page.is_active = False
    db.commit()
    client = MagicMock()
    assert page_health.run_page_health_checks(db, client_factory=lambda p: client)["checked"] == 0
    client.get_page_info.assert_not_called()

def test_health_and_score_jobs_registered():
    sched = BackgroundScheduler(timezone="UTC")
    register_jobs(sched, SessionLocal)
    jobs = {job.id: job for job in sched.get_jobs()}

    assert jobs["page_health"].trigger.interval.total_seconds() == 10 * 60
    assert jobs["page_health"].func is page_health.run_page_health_job
    assert jobs["refresh_post_scores"].trigger.interval.total_seconds() == 6 * 3600
