from datetime import datetime, timezone
from typing import Any

from pagepilot.config import settings
from pagepilot.logging_setup import log_event
from pagepilot.services.facebook_graph import GraphClient, FacebookAPIError

TOKEN_TYPES = {"USER": "user", "PAGE": "page", "APP": "app"}

def _invalid(message: str) -> dict[str, Any]:
    return {
        "is_valid": False,
        "token_type": "unknown",
        "permissions": [],
        "app_id": None,
        "user_id": None,
        "expires_at": None,
        "scopes": [],
        "error_message": message,
    }

def validate_token(token: str | None) -> dict[str, Any]:
    """Inspects a token with debug_token. Never raises."""
    if not token:
        return _invalid("Token not provided")

    inspector = settings.facebook_app_token or token
    client = GraphClient(inspector)
    try:
        data = client.get("debug_token", {"input_token": token}).get("data", {})
    except FacebookAPIError as e:
        return _invalid(e.message)

    if not data.get("is_valid"):
        return _invalid((data.get("error") or {}).get("message", "Token is invalid"))

    token_type = TOKEN_TYPES.get(data.get("type"), "unknown")
    permissions = []
    if token_type == "user":
        try:
            perms = GraphClient(token).get("me/permissions").get("data", [])
            permissions = [p["permission"] for p in perms if p.get("status") == "granted"]
        except FacebookAPIError as e:
            log_event("fb_permissions_fetch_failed", level="warning", error=e.message)

    expires_at = None
    if data.get("expires_at"):
        expires_at = datetime.fromtimestamp(data["expires_at"], tz=timezone.utc).isoformat()

    return {
        "is_valid": True,
        "token_type": token_type,
        "permissions": permissions,
        "app_id": data.get("app_id"),
        "user_id": data.get("user_id"),
        "expires_at": expires_at,
        "scopes": data.get("scopes", []),
        "error_message": None,
    }

def _is_expired(info: dict) -> bool:
    if not info.get("expires_at"):
        return False
    return datetime.fromisoformat(info["expires_at"]) <= datetime.now(timezone.utc)

def check_all_credentials() -> dict[str, Any]:
    user_token = validate_token(settings.facebook_access_token)
    page_token = validate_token(settings.fb_page_access_token) if settings.fb_page_access_token else None
    app_token = validate_token(settings.facebook_app_token) if settings.facebook_app_token else None

    recommendations = []
    if not user_token["is_valid"]:
        recommendations.append("User access token is invalid. Generate a new token from Facebook Developer Console.")
    if app_token is not None and not app_token["is_valid"]:
        recommendations.append("App token is invalid. Check your App ID and App Secret.")

    granted = set(user_token["permissions"]) | set(user_token["scopes"])
    if user_token["is_valid"] and not granted:
        recommendations.append("No permissions granted. Request the required permissions for your app.")
    if user_token["is_valid"] and granted:
        if "pages_show_list" not in granted:
            recommendations.append("Missing pages_show_list permission. Required for page management.")
        if "ads_read" not in granted:
            recommendations.append("Missing ads_read permission. Required for ad insights.")
    if _is_expired(user_token):
        recommendations.append("Access token has expired. Generate a new long-lived token.")

    return {
        "user_token": user_token,
        "page_token": page_token,
        "app_token": app_token,
        "recommendations": recommendations,
    }
