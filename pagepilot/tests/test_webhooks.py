import hashlib
import hmac
import json
from unittest.mock import MagicMock, patch

from pagepilot.models import CustomerInteraction, FacebookPage, User
from pagepilot.security.auth import create_access_token, get_password_hash
from pagepilot.services import webhooks

def _sign(body: bytes, secret: str = "test-app-secret") -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

def test_verify_signature():
    body = b'{"object": "page"}'
    assert webhooks.verify_signature(body, _sign(body))
    assert not webhooks.verify_signature(body, _sign(body, "other-secret"))
    assert not webhooks.verify_signature(body, None)
    assert not webhooks.verify_signature(body, "md5=abc")

def test_handle_verification():
    assert webhooks.handle_verification("subscribe", "verify-me", "12345") == "12345"
    assert webhooks.handle_verification("subscribe", "wrong", "12345") is None
    assert webhooks.handle_verification("unsubscribe", "verify-me", "12345") is None

def test_verification_route(client):
    res = client.get("/api/facebook/webhook", params={
        "hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "abc",
    })
    assert res.status_code == 200
    assert res.text == "abc"

    res = client.get("/api/facebook/webhook", params={
        "hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "abc",
    })
    assert res.status_code == 403

def test_webhook_rejects_bad_signature(client):
    res = client.post("/api/facebook/webhook", content=b'{"object": "page"}',
                      headers={"X-Hub-Signature-256": "sha256=deadbeef", "Content-Type": "application/json"})
    assert res.status_code == 403

def test_webhook_accepts_signed_payload(client):
    body = json.dumps({"object": "page", "entry": []}).encode()
    with patch("pagepilot.routes.webhooks.run_webhook_event") as run:
        res = client.post("/api/facebook/webhook", content=body,
                          headers={"X-Hub-Signature-256": _sign(body), "Content-Type": "application/json"})
    assert res.status_code == 200
    assert res.text == "EVENT_RECEIVED"
    run.assert_called_once()

def test_non_page_object_ignored(db):
    assert webhooks.process_webhook_event(db, {"object": "user", "entry": [{"id": "1"}]}) == 0

def test_message_answered_by_ai(db, page):
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "messaging": [{"sender": {"id": "cust-1"}, "message": {"mid": "m1", "text": "What time do you open?"}}],
    }]}
    reply = {"response": "We open at 8am!", "confidence": 0.9, "requires_human": False, "sentiment": "neutral"}
    graph = MagicMock()
    with patch("pagepilot.services.customer_service.generate_customer_service_response", return_value=reply), \
         patch("pagepilot.services.webhooks.page_client", return_value=graph):
        handled = webhooks.process_webhook_event(db, body)

    assert handled == 1
    graph.send_message.assert_called_once_with("cust-1", "We open at 8am!", page_token="page-token")
    interaction = db.query(CustomerInteraction).one()
    assert interaction.status == "responded"
    assert interaction.responded_by == "ai"
    assert interaction.is_auto_response

def test_message_escalated_when_human_needed(db, page):
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "messaging": [{"sender": {"id": "cust-2"}, "message": {"text": "I want a refund now, this is a scam!"}}],
    }]}
    graph = MagicMock()
    # No OpenAI key configured, so the conservative fallback routes to a human
    with patch("pagepilot.services.webhooks.page_client", return_value=graph):
        webhooks.process_webhook_event(db, body)

    interaction = db.query(CustomerInteraction).one()
    assert interaction.status == "escalated"
    assert interaction.sentiment == "negative"
    graph.send_message.assert_called_once_with("cust-2", webhooks.FALLBACK_REPLY, page_token="page-token")

def test_echo_messages_skipped(db, page):
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "messaging": [{"sender": {"id": page.page_id}, "message": {"is_echo": True, "text": "hi"}}],
    }]}
    webhooks.process_webhook_event(db, body)
    assert db.query(CustomerInteraction).count() == 0

def test_get_started_postback_sends_greeting(db, page):
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "messaging": [{"sender": {"id": "cust-3"}, "postback": {"payload": "GET_STARTED", "title": "Get Started"}}],
    }]}
    graph = MagicMock()
    with patch("pagepilot.services.webhooks.page_client", return_value=graph):
        webhooks.process_webhook_event(db, body)

    graph.send_message.assert_called_once_with("cust-3", webhooks.GREETING, page_token="page-token")
    interaction = db.query(CustomerInteraction).one()
    assert interaction.source == "postback"
    assert interaction.status == "responded"

def test_feed_comment_stored_and_own_comments_ignored(db, page):
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "changes": [
            {"field": "feed", "value": {"item": "comment", "verb": "add", "message": "Love this place!",
                                        "from": {"id": "fan-1", "name": "Alex"}, "comment_id": "c1"}},
            {"field": "feed", "value": {"item": "comment", "verb": "add", "message": "Thanks Alex",
                                        "from": {"id": page.page_id}}},
        ],
    }]}
    assert webhooks.process_webhook_event(db, body) == 2
    interaction = db.query(CustomerInteraction).one()
    assert interaction.source == "comment"
    assert interaction.customer_name == "Alex"
    assert interaction.sentiment == "positive"

def test_rating_becomes_review_interaction(db, page):
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "changes": [{"field": "ratings", "value": {"verb": "add", "rating": 2, "reviewer_id": "r1",
                                                    "review_text": "Service was slow"}}],
    }]}
    with patch("pagepilot.services.webhooks.track_custom_event") as track:
        webhooks.process_webhook_event(db, body)
    interaction = db.query(CustomerInteraction).one()
    assert interaction.source == "review"
    assert interaction.message == "Service was slow"
    assert track.call_args[0][1] == "CustomerReview"
    assert track.call_args[0][2]["value"] == 4

def test_unknown_page_skipped(db, page):
    body = {"object": "page", "entry": [{"id": "999", "messaging": [{"sender": {"id": "x"}, "message": {"text": "hi"}}]}]}
    assert webhooks.process_webhook_event(db, body) == 0

def test_feed_reaction_tracked(db, page):
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "changes": [{"field": "feed", "value": {"item": "reaction", "verb": "add", "reaction_type": "love",
                                                  "from": {"id": "fan-9"}}}],
    }]}
    with patch("pagepilot.services.webhooks.track_custom_event") as track:
        assert webhooks.process_webhook_event(db, body) == 1
    user_data, event_name, custom_data = track.call_args[0]
    assert event_name == "CustomerReaction"
    assert user_data == {"external_id": "fan-9"}
    assert custom_data == {"page_id": page.page_id, "value": 1, "reaction_type": "love"}
    assert db.query(CustomerInteraction).count() == 0

def test_removed_reaction_not_tracked(db, page):
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "changes": [{"field": "reactions", "value": {"verb": "remove", "reaction_type": "like"}}],
    }]}
    with patch("pagepilot.services.webhooks.track_custom_event") as track:
        webhooks.process_webhook_event(db, body)
    track.assert_not_called()

def test_live_video_tracked(db, page):
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "changes": [{"field": "live_videos", "value": {"id": "lv-1", "status": "live"}}],
    }]}
    with patch("pagepilot.services.webhooks.track_custom_event") as track:
        webhooks.process_webhook_event(db, body)
    user_data, event_name, custom_data = track.call_args[0]
    assert event_name == "LiveVideo"
    assert user_data == {}
    assert custom_data == {"page_id": page.page_id, "value": 10, "status": "live"}

def second_owner(db, page):
    other = User(email="partner@example.com", password_hash=get_password_hash("x" * 10), is_active=True)
    db.add(other)
    db.commit()
    copy = FacebookPage(user_id=other.id, page_id=page.page_id, page_name="Corner Cafe", access_token="partner-token")
    db.add(copy)
    db.commit()
    return other, copy

def test_shared_page_message_reaches_every_owner(db, page):
    _, copy = second_owner(db, page)
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "messaging": [{"sender": {"id": "cust-7"}, "message": {"mid": "m7", "text": "Do you cater events?"}}],
    }]}
    reply = {"response": "Yes we do!", "confidence": 0.9, "requires_human": False, "sentiment": "neutral"}
    graph = MagicMock()
    with patch("pagepilot.services.customer_service.generate_customer_service_response", return_value=reply), \
         patch("pagepilot.services.webhooks.page_client", return_value=graph), \
         patch("pagepilot.services.webhooks.track_custom_event") as track:
        assert webhooks.process_webhook_event(db, body) == 1

    stored = {i.page_id: i for i in db.query(CustomerInteraction).all()}
    assert set(stored) == {page.id, copy.id}
    assert stored[page.id].status == "responded"
    assert stored[copy.id].status == "pending"
    # one Messenger reply and one conversion event per inbound message
    graph.send_message.assert_called_once_with("cust-7", "Yes we do!", page_token="page-token")
    assert track.call_count == 1
    db.expire_all()
    assert db.get(FacebookPage, copy.id).last_webhook_at is not None

def test_shared_page_comment_stored_for_every_owner(db, page):
    _, copy = second_owner(db, page)
    body = {"object": "page", "entry": [{
        "id": page.page_id,
        "changes": [{"field": "feed", "value": {"item": "comment", "verb": "add", "message": "Great coffee",
                                                  "from": {"id": "fan-2", "name": "Jo"}}}],
    }]}
    with patch("pagepilot.services.webhooks.track_custom_event") as track:
        assert webhooks.process_webhook_event(db, body) == 1
    assert {i.page_id for i in db.query(CustomerInteraction).all()} == {page.id, copy.id}
    assert track.call_count == 1

def test_second_owner_resolves_own_copy_by_facebook_id(client, db, page):
    other, copy = second_owner(db, page)
    headers = {"Authorization": f"Bearer {create_access_token({'sub': str(other.id)})}"}
    db.add(CustomerInteraction(page_id=copy.id, customer_id="c1", message="hi", status="pending"))
    db.add(CustomerInteraction(page_id=page.id, customer_id="c2", message="not yours", status="pending"))
    db.commit()

    res = client.get(f"/api/customer-service/interactions/{page.page_id}", headers=headers)
    assert res.status_code == 200
    assert [i["customer_id"] for i in res.json()] == ["c1"]
