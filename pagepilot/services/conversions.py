import hashlib
import json
import re
import time
import uuid
from typing import Any

from pagepilot.config import settings
from pagepilot.logging_setup import log_event
from pagepilot.services.facebook_graph import GraphClient, FacebookAPIError

PARTNER_AGENT = "pagepilot-1.0"

# Input field -> Meta short key, hashed before sending
HASHED_FIELDS = {
    "email": "em",
    "phone": "ph",
    "first_name": "fn",
    "last_name": "ln",
    "city": "ct",
    "state": "st",
    "zip_code": "zp",
    "country": "country",
    "date_of_birth": "db",
    "gender": "ge",
    "external_id": "external_id",
}

PLAIN_FIELDS = {
    "client_ip_address": "client_ip_address",
    "client_user_agent": "client_user_agent",
    "click_id": "fbc",
    "browser_id": "fbp",
    "subscription_id": "subscription_id",
    "fb_login_id": "fb_login_id",
}

def hash_value(value: str) -> str:
    return hashlib.sha256(value.lower().strip().encode("utf-8")).hexdigest()

def normalize_phone(phone: str) -> str:
    digits = re.sub(r"\D", "", phone)
    if not digits.startswith("1"):
        digits = "1" + digits
    return digits

def normalize_user_data(user_data: dict[str, Any]) -> dict[str, Any]:
    normalized = {}
    for field, key in HASHED_FIELDS.items():
        value = user_data.get(field)
        if not value:
            continue
        value = str(value)
        if field == "phone":
            value = normalize_phone(value)
        normalized[key] = hash_value(value)

    for field, key in PLAIN_FIELDS.items():
        if user_data.get(field):
            normalized[key] = user_data[field]
    return normalized

def build_event(event_name: str, user_data: dict, custom_data: dict | None = None,
                action_source: str = "website", event_source_url: str | None = None) -> dict[str, Any]:
    event = {
        "event_name": event_name,
        "event_time": int(time.time()),
        "event_id": str(uuid.uuid4()),
        "action_source": action_source,
        "user_data": normalize_user_data(user_data),
    }
    if custom_data:
        event["custom_data"] = custom_data
    if event_source_url:
        event["event_source_url"] = event_source_url
    return event

def send_events(events: list[dict], test_event_code: str | None = None) -> dict[str, Any]:
    if not settings.facebook_pixel_id:
        raise FacebookAPIError("FACEBOOK_PIXEL_ID not configured")

    payload = {
        "data": json.dumps(events),
        "partner_agent": PARTNER_AGENT,
    }
    code = test_event_code or settings.facebook_test_event_code
    if code:
        payload["test_event_code"] = code

    client = GraphClient(settings.facebook_access_token)
    result = client.post(f"{settings.facebook_pixel_id}/events", payload)
    log_event("capi_events_sent", events_received=result.get("events_received"), count=len(events))
    return result

def track_custom_event(user_data: dict, event_name: str, custom_data: dict | None = None,
                       action_source: str = "chat") -> dict[str, Any] | None:
    """Best-effort event tracking used by the webhook pipeline."""
    if not settings.facebook_pixel_id or not settings.facebook_access_token:
        return None
    try:
        return send_events([build_event(event_name, user_data, custom_data, action_source)])
    except FacebookAPIError as e:
        log_event("capi_event_failed", level="warning", event_name=event_name, error=e.message)
        return None
