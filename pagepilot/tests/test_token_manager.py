import time
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from pagepilot.config import settings
from pagepilot.services import token_manager
from pagepilot.services.facebook_graph import FacebookAPIError

def graph_responses(debug: dict, permissions: list[dict] | None = None):
    def get(path, params=None):
        if path == "debug_token":
            return {"data": debug}
        if path == "me/permissions":
            return {"data": permissions or []}
        raise AssertionError(f"unexpected Graph call: {path}")
    return get

@pytest.fixture
def only_user_token(monkeypatch):
    monkeypatch.setattr(settings, "facebook_access_token", "user-token")
    monkeypatch.setattr(settings, "fb_page_access_token", None)
    monkeypatch.setattr(settings, "facebook_app_token", None)

def test_missing_token_is_invalid():
    info = token_manager.validate_token(None)
    assert info["is_valid"] is False
    assert info["error_message"] == "Token not provided"

def test_valid_user_token_lists_granted_permissions():
    expires = int(time.time()) + 3600
    debug = {"is_valid": True, "type": "USER", "app_id": "app-1", "user_id": "u-1",
             "expires_at": expires, "scopes": ["pages_show_list", "ads_read"]}
    permissions = [
        {"permission": "pages_show_list", "status": "granted"},
        {"permission": "ads_read", "status": "declined"},
    ]
    with patch("pagepilot.services.token_manager.GraphClient") as graph:
        graph.return_value.get.side_effect = graph_responses(debug, permissions)
        info = token_manager.validate_token("user-token")

    assert info["is_valid"] is True
    assert info["token_type"] == "user"
    assert info["permissions"] == ["pages_show_list"]
    assert info["app_id"] == "app-1"
    assert info["expires_at"] == datetime.fromtimestamp(expires, tz=timezone.utc).isoformat()
    assert info["error_message"] is None

def test_page_token_skips_permission_lookup():
    debug = {"is_valid": True, "type": "PAGE", "scopes": ["pages_messaging"]}
    with patch("pagepilot.services.token_manager.GraphClient") as graph:
        graph.return_value.get.side_effect = graph_responses(debug)
        info = token_manager.validate_token("page-token")
    assert info["token_type"] == "page"
    assert info["permissions"] == []
    assert [c.args[0] for c in graph.return_value.get.call_args_list] == ["debug_token"]

def test_invalid_token_reports_graph_message():
    debug = {"is_valid": False, "error": {"message": "Session has expired"}}
    with patch("pagepilot.services.token_manager.GraphClient") as graph:
        graph.return_value.get.side_effect = graph_responses(debug)
        info = token_manager.validate_token("stale")
    assert info["is_valid"] is False
    assert info["error_message"] == "Session has expired"

def test_graph_error_never_raises():
    with patch("pagepilot.services.token_manager.GraphClient") as graph:
        graph.return_value.get.side_effect = FacebookAPIError("Invalid OAuth access token.", status_code=400, code=190)
        info = token_manager.validate_token("bad")
    assert info["is_valid"] is False
    assert info["error_message"] == "Invalid OAuth access token."

def test_credentials_recommend_missing_permissions_and_expiry(only_user_token):
    debug = {"is_valid": True, "type": "USER", "expires_at": int(time.time()) - 60, "scopes": []}
    with patch("pagepilot.services.token_manager.GraphClient") as graph:
        graph.return_value.get.side_effect = graph_responses(debug, [{"permission": "ads_read", "status": "granted"}])
        report = token_manager.check_all_credentials()

    assert report["page_token"] is None
    assert report["app_token"] is None
    assert report["recommendations"] == [
        "Missing pages_show_list permission. Required for page management.",
        "Access token has expired. Generate a new long-lived token.",
    ]

def test_credentials_recommend_without_any_permission(only_user_token):
    debug = {"is_valid": True, "type": "USER", "scopes": []}
    with patch("pagepilot.services.token_manager.GraphClient") as graph:
        graph.return_value.get.side_effect = graph_responses(debug, [])
        report = token_manager.check_all_credentials()
    assert report["recommendations"] == ["No permissions granted. Request the required permissions for your app."]

def test_credentials_flag_invalid_user_and_app_tokens(only_user_token, monkeypatch):
    monkeypatch.setattr(settings, "facebook_app_token", "app-token")
    with patch("pagepilot.services.token_manager.GraphClient") as graph:
        graph.return_value.get.side_effect = graph_responses({"is_valid": False})
        report = token_manager.check_all_credentials()

    assert report["user_token"]["is_valid"] is False
    assert report["app_token"]["is_valid"] is False
    assert report["recommendations"] == [
        "User access token is invalid. Generate a new token from Facebook Developer Console.",
        "App token is invalid. Check your App ID and App Secret.",
    ]

def test_credentials_clean_when_everything_granted(only_user_token):
    debug = {"is_valid": True, "type": "USER", "scopes": ["pages_show_list", "ads_read"]}
    with patch("pagepilot.services.token_manager.GraphClient") as graph:
        graph.return_value.get.side_effect = graph_responses(debug, [
            {"permission": "pages_show_list", "status": "granted"},
            {"permission": "ads_read", "status": "granted"},
        ])
        report = token_manager.check_all_credentials()
    assert report["user_token"]["permissions"] == ["pages_show_list", "ads_read"]
    assert report["recommendations"] == []
