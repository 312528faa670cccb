# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import requests

from pagepilot.config import settings
from pagepilot.logging_setup import log_event

DEFAULT_TIMEOUT = 30

DEFAULT_SCOPES = [
    "pages_show_list",
    "pages_read_engagement",
    "pages_manage_posts",
    "pages_messaging",
    "ads_read",
    "ads_management",
    "business_management",
]

def graph_url(api_version: str | None = None) -> str:
    return f"https://graph.facebook.com/{api_version or settings.graph_api_version}"

class FacebookAPIError(Exception):
    """Raised for any Graph API error envelope or transport failure."""
    def __init__(self, message: str, status_code: int | None = None, code: int | None = None,
                 fbtrace_id: str | None = None, payload: dict | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.fbtrace_id = fbtrace_id
        self.payload = payload or {}

    @classmethod
    def from_response(cls, resp: requests.Response) -> "FacebookAPIError":
        try:
            body = resp.json()
        except ValueError:
            body = {}
        err = body.get("error", {}) if isinstance(body, dict) else {}
        return cls(
            err.get("message") or f"Graph API request failed with status {resp.status_code}",
            status_code=resp.status_code,
            code=err.get("code"),
            fbtrace_id=err.get("fbtrace_id"),
            payload=body if isinstance(body, dict) else {},
        )

def _request(method: str, url: str, *, params: dict | None = None, data: dict | None = None,
             json_body: dict | None = None) -> dict[str, Any]:
    try:
        resp = requests.request(method, url, params=params, data=data, json=json_body, timeout=DEFAULT_TIMEOUT)
    except requests.RequestException as e:
        raise FacebookAPIError(f"Graph API unreachable: {e}") from e

    if resp.status_code >= 400:
        err = FacebookAPIError.from_response(resp)
        log_event("fb_graph_error", level="warning", path=url.split(".com/")[-1], status_code=resp.status_code,
                  meta_error_code=err.code, fbtrace_id=err.fbtrace_id)
        raise err

    try:
        body = resp.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and "error" in body:
        raise FacebookAPIError.from_response(resp)
    return body

class GraphClient:
    """Thin wrapper over the Graph API for a single access token."""

    def __init__(self, access_token: str | None = None, api_version: str | None = None):
        self.access_token = access_token or settings.facebook_access_token
        self.base_url = graph_url(api_version)

    def _token(self, override: str | None = None) -> str:
        token = override or self.access_token
        if not token:
            raise FacebookAPIError("Facebook access token not configured")
        return token

    def get(self, path: str, params: dict | None = None, token: str | None = None) -> dict[str, Any]:
        params = {**(params or {}), "access_token": self._token(token)}
        return _request("GET", f"{self.base_url}/{path.lstrip('/')}", params=params)

    def post(self, path: str, data: dict | None = None, token: str | None = None) -> dict[str, Any]:
        data = {**(data or {}), "access_token": self._token(token)}
        return _request("POST", f"{self.base_url}/{path.lstrip('/')}", data=data)

    def get_me(self) -> dict[str, Any]:
        return self.get("me", {"fields": "id,name,email"})

    def get_pages(self) -> list[dict[str, Any]]:
        data = self.get("me/accounts", {"fields": "id,name,access_token,category,followers_count,fan_count"})
        pages = []
        for p in data.get("data", []):
            pages.append({
                "id": p.get("id"),
                "name": p.get("name"),
                "access_token": p.get("access_token"),
                "category": p.get("category"),
                "follower_count": p.get("followers_count") or p.get("fan_count") or 0,
            })
        return pages

    def get_ad_accounts(self) -> list[dict[str, Any]]:
        data = self.get("me/adaccounts", {"fields": "id,name,currency,account_status"})
        return [
            {
                "id": a.get("id"),
                "name": a.get("name"),
                "currency": a.get("currency"),
                "account_status": a.get("account_status"),
            }
            for a in data.get("data", [])
            if a.get("id")
        ]

    def get_page_info(self, page_id: str) -> dict[str, Any]:
        return self.get(page_id, {"fields": "id,name,category,fan_count,followers_count,link,about,is_published"})

    def get_recent_posts(self, page_id: str, limit: int = 10) -> list[dict[str, Any]]:
        data = self.get(f"{page_id}/posts", {
            "fields": "id,message,created_time,likes.summary(true),comments.summary(true),shares",
            "limit": limit,
        })
        posts = []
        for p in data.get("data", []):
            posts.append({
                "id": p.get("id"),
                "message": p.get("message", ""),
                "created_time": p.get("created_time"),
                "likes": ((p.get("likes") or {}).get("summary") or {}).get("total_count", 0),
                "comments": ((p.get("comments") or {}).get("summary") or {}).get("total_count", 0),
                "shares": (p.get("shares") or {}).get("count", 0),
            })
        return posts

    def get_page_insights(self, page_id: str, metrics: list[str] | None = None, days: int = 30) -> list[dict[str, Any]]:
        metrics = metrics or ["page_impressions", "page_post_engagements", "page_fan_adds"]
        until = datetime.now(timezone.utc).date()
        since = until - timedelta(days=days)
        data = self.get(f"{page_id}/insights", {
            "metric": ",".join(metrics),
            "period": "day",
            "since": since.isoformat(),
            "until": until.isoformat(),
        })
        return data.get("data", [])

    def get_post_insights(self, post_id: str, metrics: list[str]) -> dict[str, float]:
        data = self.get(f"{post_id}/insights", {"metric": ",".join(metrics)})
        values = {}
        for row in data.get("data", []):
            points = row.get("values") or [{}]
            values[row.get("name")] = points[0].get("value", 0) or 0
        return values

    def publish_post(self, page_id: str, message: str, *, link: str | None = None,
                     scheduled_time: datetime | None = None, page_token: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": message}
        if link:
            payload["link"] = link
        if scheduled_time:
            # Graph accepts scheduled posts between 10 minutes and 75 days ahead
            payload["published"] = "false"
            payload["scheduled_publish_time"] = int(scheduled_time.timestamp())

        log_event("fb_publish_start", page_id=page_id, scheduled=bool(scheduled_time))
        result = self.post(f"{page_id}/feed", payload, token=page_token)
        log_event("fb_publish_success", page_id=page_id, remote_id=result.get("id"))
        return result

    def upload_photo(self, page_id: str, url: str, caption: str = "", published: bool = True,
                     page_token: str | None = None) -> dict[str, Any]:
        return self.post(f"{page_id}/photos", {
            "url": url,
            "caption": caption,
            "published": "true" if published else "false",
        }, token=page_token)

    def send_message(self, recipient_id: str, text: str, page_token: str | None = None) -> dict[str, Any]:
        """Messenger Send API; the token must be a page token."""
        token = self._token(page_token)
        result = _request(
            "POST",
            f"{self.base_url}/me/messages",
            params={"access_token": token},
            json_body={
                "recipient": {"id": recipient_id},
                "message": {"text": text},
                "messaging_type": "RESPONSE",
            },
        )
        log_event("fb_message_sent", recipient_id=recipient_id, message_id=result.get("message_id"))
        return result

    def subscribe_app(self, page_id: str, fields: list[str], page_token: str | None = None) -> bool:
        result = self.post(f"{page_id}/subscribed_apps", {"subscribed_fields": ",".join(fields)}, token=page_token)
        return bool(result.get("success"))

    def get_subscribed_apps(self, page_id: str, page_token: str | None = None) -> list[dict[str, Any]]:
        return self.get(f"{page_id}/subscribed_apps", token=page_token).get("data", [])

def page_client(page=None) -> GraphClient:
    """Client bound to a stored page's token, falling back to configured tokens."""
    token = getattr(page, "access_token", None) or settings.page_token
    return GraphClient(token)

def get_oauth_url(redirect_uri: str, scopes: list[str] | None = None, state: str | None = None) -> str:
    if not settings.facebook_app_id:
        raise FacebookAPIError("FACEBOOK_APP_ID not configured")
    params = {
        "client_id": settings.facebook_app_id,
        "redirect_uri": redirect_uri,
        "scope": ",".join(scopes or DEFAULT_SCOPES),
        "response_type": "code",
    }
    if state:
        params["state"] = state
    return f"https://www.facebook.com/{settings.graph_api_version}/dialog/oauth?{urlencode(params)}"

def exchange_code_for_token(code: str, redirect_uri: str) -> dict[str, Any]:
    if not settings.facebook_app_id or not settings.facebook_app_secret:
        raise FacebookAPIError("Facebook app credentials not configured")
    return _request("GET", f"{graph_url()}/oauth/access_token", params={
        "client_id": settings.facebook_app_id,
        "client_secret": settings.facebook_app_secret,
        "redirect_uri": redirect_uri,
        "code": code,
    })

def get_long_lived_token(short_token: str) -> dict[str, Any]:
    if not settings.facebook_app_id or not settings.facebook_app_secret:
        raise FacebookAPIError("Facebook app credentials not configured")
    return _request("GET", f"{graph_url()}/oauth/access_token", params={
        "grant_type": "fb_exchange_token",
        "client_id": settings.facebook_app_id,
        "client_secret": settings.facebook_app_secret,
        "fb_exchange_token": short_token,
    })
