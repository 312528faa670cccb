from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from pagepilot.config import settings
from pagepilot.models import AutomationRun, ContentQueueItem, FacebookAdAccount, Notification, ScheduledBoost
from pagepilot.services import auto_boost, auto_content, auto_post
from pagepilot.services.facebook_graph import FacebookAPIError
from pagepilot.services.llm import FALLBACK_SHORT_POST

@pytest.fixture
def auto_post_on(monkeypatch):
    monkeypatch.setattr(settings, "auto_post_enabled", True)
    monkeypatch.setattr(settings, "facebook_page_id", "555")
    monkeypatch.setattr(settings, "min_score_threshold", 50)

def test_pick_topic():
    assert auto_post.pick_topic(10) == "audience re-engagement"
    assert auto_post.pick_topic(35) == "content optimization"
    assert auto_post.pick_topic(45) == "engagement improvement"

def test_auto_post_disabled(db):
    result = auto_post.run_auto_facebook_post(db, client=MagicMock())
    assert result["executed"] is False
    assert "disabled" in result["reason"]
    assert db.query(AutomationRun).one().status == "skipped"

def test_auto_post_publishes_when_no_posts(db, auto_post_on):
    client = MagicMock()
    client.get_recent_posts.return_value = []
    client.publish_post.return_value = {"id": "555_1"}
    result = auto_post.run_auto_facebook_post(db, client=client)

    assert result["executed"] is True
    assert result["post_data"]["topic"] == "engagement boost"
    # No OpenAI key, so the fixed fallback post is used
    client.publish_post.assert_called_once_with("555", FALLBACK_SHORT_POST)

def test_auto_post_skips_when_performing_well(db, auto_post_on):
    client = MagicMock()
    client.get_recent_posts.return_value = [{"id": "a"}, {"id": "b"}]
    client.get_post_insights.return_value = {"post_impressions": 100, "post_engaged_users": 80}
    result = auto_post.run_auto_facebook_post(db, client=client)

    assert result["executed"] is False
    assert result["average_score"] == 80.0
    client.publish_post.assert_not_called()

def test_auto_post_triggers_below_threshold(db, auto_post_on):
    client = MagicMock()
    client.get_recent_posts.return_value = [{"id": "a"}, {"id": "b"}]
    client.get_post_insights.return_value = {"post_impressions": 100, "post_engaged_users": 10}
    client.publish_post.return_value = {"id": "555_2"}
    result = auto_post.run_auto_facebook_post(db, client=client)

    assert result["executed"] is True
    assert result["post_data"]["topic"] == "audience re-engagement"
    assert "2 of 2 posts below threshold" in result["reason"]

def test_auto_post_never_raises(db, auto_post_on):
    client = MagicMock()
    client.get_recent_posts.side_effect = FacebookAPIError("token expired")
    result = auto_post.run_auto_facebook_post(db, client=client)
    assert result["executed"] is False
    assert "token expired" in result["reason"]
    assert db.query(AutomationRun).one().status == "failed"

def test_auto_post_status_reports_last_run(db):
    auto_post.run_auto_facebook_post(db, client=MagicMock())
    status = auto_post.get_auto_post_status(db)
    assert status["enabled"] is False
    assert status["last_run"]["status"] == "skipped"
    assert status["next_run"] is None

def test_auto_boost_processes_todays_boosts(db, user):
    db.add(FacebookAdAccount(user_id=user.id, ad_account_id="act_9", name="Main", access_token="ads-token"))
    today = date(2026, 3, 2)
    ok = ScheduledBoost(user_id=user.id, post_id="111_1", date=today, budget=15, duration_days=2, status="scheduled")
    bad = ScheduledBoost(user_id=user.id, post_id="111_2", date=today, status="scheduled")
    other_day = ScheduledBoost(user_id=user.id, post_id="111_3", date=date(2026, 3, 3), status="scheduled")
    db.add_all([ok, bad, other_day])
    db.commit()

    def fake_boost(post_id, budget, days, **creds):
        assert creds == {"page_id": "1234567890123", "ad_account_id": "act_9", "access_token": "ads-token"}
        if post_id == "111_2":
            raise FacebookAPIError("Invalid post")
        return {"campaign_id": "camp-1", "total_budget": budget * days, "duration_days": days}

    with patch("pagepilot.services.auto_boost.boost_post", side_effect=fake_boost):
        summary = auto_boost.run_auto_boost(db, today=today)

    assert summary["total"] == 2
    assert summary["successful"] == 1
    assert summary["failed"] == 1
    assert summary["success_rate"] == 50.0
    assert ok.status == "active" and ok.campaign_id == "camp-1"
    assert bad.status == "failed" and bad.last_error == "Invalid post"
    assert other_day.status == "scheduled"
    assert db.query(Notification).filter(Notification.title == "Boost campaign created").count() == 1

def test_with_retry_backs_off_then_succeeds():
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("temporary")
        return "done"

    assert auto_content.with_retry(flaky, sleep=sleeps.append) == "done"
    assert sleeps == [2, 4]

def test_with_retry_gives_up():
    with pytest.raises(RuntimeError):
        auto_content.with_retry(MagicMock(side_effect=RuntimeError("down")), max_retries=2, sleep=lambda s: None)

def test_recommend_time_slots_defaults_without_history(db, user):
    now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
    slots = auto_content.recommend_time_slots(db, user, client=MagicMock(), now=now)
    assert [(s["day"], s["hour"], s["source"]) for s in slots] == [(1, 9, "default"), (2, 13, "default"), (3, 19, "default")]
    assert all(s["scheduled_for"] > now for s in slots)

def test_recommend_time_slots_ranks_history(db, user, page):
    client = MagicMock()
    client.get_recent_posts.return_value = [
        {"created_time": "2026-02-23T23:00:00+0000", "likes": 10, "comments": 5, "shares": 2},
        {"created_time": "2026-02-24T14:00:00+0000", "likes": 1},
        {"created_time": "garbage"},
    ]
    slots = auto_content.recommend_time_slots(db, user, client=client, count=2)
    assert [s["source"] for s in slots] == ["history", "history"]
    assert slots[0]["score"] == 26.0

def test_run_auto_content_schedules_post_and_boost(db, user, page):
    user.autopilot_enabled = True
    db.commit()
    client = MagicMock()
    client.get_recent_posts.return_value = []
    client.publish_post.return_value = {"id": "1234567890123_99"}

    summary = auto_content.run_auto_content(db, client=client, sleep=lambda s: None)

    assert summary["successful"] == 1
    item = db.query(ContentQueueItem).one()
    assert item.status == "remote_scheduled"
    assert item.external_post_id == "1234567890123_99"
    assert "more bookings" in item.content
    boost = db.query(ScheduledBoost).one()
    assert boost.budget == auto_content.BOOST_BUDGET
    assert boost.post_id == "1234567890123_99"
    kwargs = client.publish_post.call_args.kwargs
    assert kwargs["scheduled_time"] > datetime.now(timezone.utc)
    assert db.query(AutomationRun).filter(AutomationRun.kind == "auto_content").one().status == "success"

def test_run_auto_content_records_failures(db, user):
    user.autopilot_enabled = True
    db.commit()
    with patch("pagepilot.services.auto_content.send_alert") as alert:
        summary = auto_content.run_auto_content(db, client=MagicMock(), sleep=lambda s: None)
    assert summary["failed"] == 1
    assert "No Facebook page" in summary["results"][0]["error"]
    assert alert.call_args[0][0] == user.id
    assert db.query(AutomationRun).one().status == "failed"
