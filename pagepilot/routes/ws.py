from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from pagepilot.config import settings
from pagepilot.db import SessionLocal
from pagepilot.logging_setup import log_event
from pagepilot.models import CustomerInteraction, Employee, User
from pagepilot.security.auth import decode_access_token
from pagepilot.security.rbac import get_owned_page
from pagepilot.services.customer_service import record_response, run_ai_fallback, serialize, store_interaction
from pagepilot.services.dashboard import get_dashboard_metrics
from pagepilot.services.realtime import manager, page_room, user_room
from pagepilot.services.scheduler import schedule_once

router = APIRouter(tags=["realtime"])

class ClientError(Exception):
    pass

def _joinable_page_id(db: Session, user: User, data: dict[str, Any]) -> int:
    try:
        page = get_owned_page(db, user, data.get("page_id", ""))
    except HTTPException as e:
        raise ClientError(e.detail)
    return page.id

def _customer_message(db: Session, user: User, data: dict[str, Any]) -> dict[str, Any]:
    if not data.get("customer_id") or not data.get("message"):
        raise ClientError("customer_id and message are required")
    try:
        page = get_owned_page(db, user, data.get("page_id", ""))
    except HTTPException as e:
        raise ClientError(e.detail)

    interaction = store_interaction(
        db, page, str(data["customer_id"]), data["message"],
        source=data.get("source") or "messenger",
        customer_name=data.get("customer_name"),
    )
    run_at = datetime.now(timezone.utc) + timedelta(seconds=settings.ai_fallback_reply_seconds)
    queued = schedule_once(run_ai_fallback, run_at, [SessionLocal, interaction.id], f"ai_fallback_{interaction.id}")
    return {"type": "message-stored", "data": {**serialize(interaction), "ai_fallback_scheduled": queued}}

def _employee_response(db: Session, user: User, data: dict[str, Any]) -> dict[str, Any]:
    interaction = db.get(CustomerInteraction, data.get("interaction_id"))
    if not interaction or not data.get("response"):
        raise ClientError("interaction_id and response are required")
    try:
        get_owned_page(db, user, interaction.page_id)
    except HTTPException as e:
        raise ClientError(e.detail)

    employee = None
    if data.get("employee_id"):
        employee = db.get(Employee, data["employee_id"])
        if not employee or employee.user_id != user.id:
            raise ClientError("Employee not found")
    record_response(db, interaction, data["response"], employee=employee, response_time=data.get("response_time"))
    return {"type": "response-recorded", "data": {"interaction_id": interaction.id}}

def _employee_active(db: Session, user: User, data: dict[str, Any]) -> dict[str, Any]:
    employee = db.get(Employee, data.get("employee_id"))
    if not employee or employee.user_id != user.id:
        raise ClientError("Employee not found")
    employee.last_active = datetime.now(timezone.utc)
    db.commit()
    status = {"employee_id": employee.id, "name": employee.name, "status": data.get("status") or "online"}
    manager.publish(user_room(user.id), "employee-status", status)
    return {"type": "employee-status", "data": status}

HANDLERS = {
    "customer-message": _customer_message,
    "employee-response": _employee_response,
    "employee-active": _employee_active,
}

def _load_user(db: Session, user_id: int) -> User | None:
    user = db.get(User, user_id)
    return user if user and user.is_active else None

def _dispatch(db: Session, user: User, kind: str | None, data: dict[str, Any]) -> tuple[dict[str, Any], str | None]:
    """Runs one client request; returns the reply and a room to join, if any."""
    try:
        if kind == "join-page":
            page_id = _joinable_page_id(db, user, data)
            room = page_room(page_id)
            return {"type": "joined-page", "data": {"page_id": page_id, "room": room}}, room
        if kind == "request-metrics":
            return {"type": "metrics-update", "data": get_dashboard_metrics(db, user)}, None
        if kind in HANDLERS:
            return HANDLERS[kind](db, user, data), None
        raise ClientError(f"Unknown message type: {kind}")
    except ClientError as e:
        return {"type": "error", "data": {"message": str(e), "request": kind}}, None

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    user_id = decode_access_token(websocket.query_params.get("token") or "")
    if user_id is None:
        await websocket.close(code=4401)
        return

    # Session work is blocking, so it runs in the threadpool; socket I/O stays on the loop
    db = SessionLocal()
    try:
        user = await run_in_threadpool(_load_user, db, user_id)
        if user is None:
            await websocket.close(code=4401)
            return

        await manager.connect(websocket)
        manager.join(websocket, user_room(user.id))
        await websocket.send_json({"type": "connected", "data": {"user_id": user.id}})

        while True:
            msg = await websocket.receive_json()
            kind = msg.get("type") if isinstance(msg, dict) else None
            data = (msg.get("data") if isinstance(msg, dict) else None) or {}
            reply, room = await run_in_threadpool(_dispatch, db, user, kind, data)
            if room:
                manager.join(websocket, room)
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        pass
    except ValueError:
        # malformed JSON frame
        await websocket.close(code=1003)
    finally:
        manager.disconnect(websocket)
        await run_in_threadpool(db.close)
        log_event("ws_disconnected", user_id=user_id)
