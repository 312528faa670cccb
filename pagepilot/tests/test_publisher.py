from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from pagepilot.db import SessionLocal
from pagepilot.models import ContentQueueItem, Notification, RestrictionAlert
from pagepilot.services import publisher
from pagepilot.services.facebook_graph import FacebookAPIError

def make_item(db, user, page, **overrides):
    fields = dict(
        user_id=user.id,
        page_id=page.id,
        title="Weekend brunch",
        content="Join us for brunch this weekend",
        hashtags=["#brunch", "#weekend"],
        status="scheduled",
        scheduled_for=datetime.now(timezone.utc) - timedelta(minutes=1),
        retry_count=0,
        flags={},
    )
    fields.update(overrides)
    item = ContentQueueItem(**fields)
    db.add(item)
    db.commit()
    return item

def test_compose_message_appends_hashtags(db, user, page):
    item = make_item(db, user, page)
    assert publisher.compose_message(item) == "Join us for brunch this weekend\n\n#brunch #weekend"

def test_publish_success(db, user, page):
    item = make_item(db, user, page)
    graph = MagicMock()
    graph.publish_post.return_value = {"id": "123_456"}
    with patch("pagepilot.services.publisher.page_client", return_value=graph):
        result = publisher.publish_queue_item(db, item)

    assert result == {"ok": True, "remote_id": "123_456"}
    assert item.status == "published"
    assert item.external_post_id == "123_456"
    assert item.published_at is not None
    assert item.flags["policy"]["needs_review"] is False
    assert db.query(Notification).filter(Notification.title == "Post published").count() == 1

def test_publish_failure_schedules_retry(db, user, page):
    item = make_item(db, user, page)
    graph = MagicMock()
    graph.publish_post.side_effect = FacebookAPIError("(#200) Permissions error")
    with patch("pagepilot.services.publisher.page_client", return_value=graph):
        result = publisher.publish_queue_item(db, item)

    assert result["will_retry"] is True
    assert item.status == "scheduled"
    assert item.retry_count == 1
    assert item.failure_reason == "(#200) Permissions error"

def test_publish_failure_gives_up_after_max_retries(db, user, page):
    item = make_item(db, user, page, retry_count=2)
    graph = MagicMock()
    graph.publish_post.side_effect = FacebookAPIError("still broken")
    with patch("pagepilot.services.publisher.page_client", return_value=graph):
        result = publisher.publish_queue_item(db, item)

    assert result["will_retry"] is False
    assert item.status == "failed"
    assert item.retry_count == 3

def test_critical_policy_risk_blocks_publish(db, user, page):
    item = make_item(db, user, page)
    verdict = {"is_compliant": False, "risk_level": "critical",
               "violations": ["Misleading financial claims"], "suggestions": ["Remove income promises"]}
    graph = MagicMock()
    with patch("pagepilot.services.publisher.check_policy_compliance", return_value=verdict), \
         patch("pagepilot.services.publisher.page_client", return_value=graph):
        result = publisher.publish_queue_item(db, item)

    assert result["ok"] is False
    assert item.status == "failed"
    assert "Misleading financial claims" in item.failure_reason
    graph.publish_post.assert_not_called()
    alert = db.query(RestrictionAlert).one()
    assert alert.severity == "critical"
    assert alert.page_id == page.id

def test_missing_page_fails_immediately(db, user, page):
    item = make_item(db, user, page, page_id=None)
    result = publisher.publish_queue_item(db, item)
    assert result["will_retry"] is False
    assert item.status == "failed"

def test_process_content_queue_only_publishes_due_items(db, user, page):
    due = make_item(db, user, page)
    later = make_item(db, user, page, scheduled_for=datetime.now(timezone.utc) + timedelta(hours=2))
    make_item(db, user, page, status="draft")
    graph = MagicMock()
    graph.publish_post.return_value = {"id": "p1"}

    with patch("pagepilot.services.publisher.page_client", return_value=graph):
        assert publisher.process_content_queue(SessionLocal) == 1

    db.expire_all()
    assert db.get(ContentQueueItem, due.id).status == "published"
    assert db.get(ContentQueueItem, later.id).status == "scheduled"
    graph.publish_post.assert_called_once()
