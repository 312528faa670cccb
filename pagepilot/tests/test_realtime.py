import threading
from unittest.mock import patch

import pytest
from fastapi import WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from pagepilot.db import SessionLocal
from pagepilot.models import CustomerInteraction
from pagepilot.security.auth import create_access_token
from pagepilot.services import customer_service
from pagepilot.services.realtime import ConnectionManager, page_room, user_room

def test_publish_without_clients_is_noop():
    manager = ConnectionManager()
    assert manager.publish(user_room(1), "alert", {"x": 1}) is False
    assert manager.publish(None, "alert") is False

def test_room_names():
    assert user_room(7) == "user:7"
    assert page_room(3) == "page:3"

def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=nope"):
            pass
    assert exc.value.code == 4401

def test_websocket_flow(client, user, page, db):
    token = create_access_token({"sub": str(user.id)})
    with client.websocket_connect(f"/ws?token={token}") as ws:
        assert ws.receive_json()["type"] == "connected"

        ws.send_json({"type": "join-page", "data": {"page_id": page.id}})
        assert ws.receive_json()["data"]["room"] == page_room(page.id)

        ws.send_json({"type": "request-metrics"})
        metrics = ws.receive_json()
        assert metrics["type"] == "metrics-update"
        assert metrics["data"]["pages_connected"] == 1

        ws.send_json({"type": "customer-message", "data": {
            "page_id": page.id, "customer_id": "c9", "message": "Is the patio open?",
        }})
        # The page room broadcast and the direct reply may arrive in either order
        received = {ws.receive_json()["type"], ws.receive_json()["type"]}
        assert received == {"new-customer-message", "message-stored"}

        ws.send_json({"type": "unknown"})
        assert ws.receive_json()["type"] == "error"

    db.expire_all()
    interaction = db.query(CustomerInteraction).one()
    assert interaction.customer_id == "c9"
    assert interaction.status == "pending"

def test_ai_fallback_answers_confident_replies(db, page):
    interaction = customer_service.store_interaction(db, page, "c1", "What are your hours?")
    reply = {"response": "9 to 5 daily", "confidence": 0.95, "requires_human": False, "sentiment": "neutral"}
    with patch("pagepilot.services.customer_service.generate_customer_service_response", return_value=reply):
        outcome = customer_service.run_ai_fallback(SessionLocal, interaction.id)
    assert outcome == "ai-response-generated"
    db.expire_all()
    assert db.get(CustomerInteraction, interaction.id).responded_by == "ai"

def test_ai_fallback_escalates_without_model(db, page):
    interaction = customer_service.store_interaction(db, page, "c1", "Where is my refund?")
    assert customer_service.run_ai_fallback(SessionLocal, interaction.id) == "human-intervention-required"
    db.expire_all()
    assert db.get(CustomerInteraction, interaction.id).status == "escalated"

def test_ai_fallback_skips_answered(db, page):
    interaction = customer_service.store_interaction(db, page, "c1", "hello")
    customer_service.record_response(db, interaction, "Hi there", responded_by="5")
    assert customer_service.run_ai_fallback(SessionLocal, interaction.id) == "skipped"

def test_ai_fallback_flags_low_confidence(db, page):
    interaction = customer_service.store_interaction(db, page, "c1", "Do you have vegan options?")
    reply = {"response": "We might, ask at the counter", "confidence": 0.4, "requires_human": False,
             "sentiment": "neutral"}
    with patch("pagepilot.services.customer_service.generate_customer_service_response", return_value=reply), \
         patch("pagepilot.services.customer_service.manager") as manager:
        outcome = customer_service.run_ai_fallback(SessionLocal, interaction.id)

    assert outcome == "ai-response-generated"
    events = [c.args[1] for c in manager.publish.call_args_list]
    assert events == ["interaction-updated", "ai-response-generated", "low-confidence-response"]
    assert manager.publish.call_args_list[-1].args[2] == {"interaction_id": interaction.id, "confidence": 0.4}
    db.expire_all()
    assert db.get(CustomerInteraction, interaction.id).status == "responded"

def test_ai_fallback_reports_model_errors(db, page):
    interaction = customer_service.store_interaction(db, page, "c1", "Are you hiring?")
    with patch("pagepilot.services.customer_service.generate_customer_service_response",
               side_effect=RuntimeError("model timeout")), \
         patch("pagepilot.services.customer_service.manager") as manager:
        outcome = customer_service.run_ai_fallback(SessionLocal, interaction.id)

    assert outcome == "ai-response-error"
    manager.publish.assert_called_once_with(
        page_room(page.id), "ai-response-error", {"interaction_id": interaction.id, "error": "model timeout"},
    )
    db.expire_all()
    assert db.get(CustomerInteraction, interaction.id).status == "pending"

def test_websocket_database_work_leaves_the_event_loop(client, user, page):
    off_loop = {}

    async def recording(fn, *args):
        loop_thread = threading.get_ident()

        def call():
            off_loop[getattr(fn, "__name__", repr(fn))] = threading.get_ident() != loop_thread
            return fn(*args)
        return await run_in_threadpool(call)

    token = create_access_token({"sub": str(user.id)})
    with patch("pagepilot.routes.ws.run_in_threadpool", new=recording):
        with client.websocket_connect(f"/ws?token={token}") as ws:
            assert ws.receive_json()["type"] == "connected"
            ws.send_json({"type": "join-page", "data": {"page_id": page.page_id}})
            joined = ws.receive_json()
            ws.send_json({"type": "request-metrics"})
            assert ws.receive_json()["type"] == "metrics-update"

    assert joined["data"] == {"page_id": page.id, "room": page_room(page.id)}
    assert off_loop["_load_user"] is True
    assert off_loop["_dispatch"] is True
