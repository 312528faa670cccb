import json
from datetime import datetime, timedelta, timezone, date
from typing import Any

from sqlalchemy.orm import Session

from pagepilot.config import settings
from pagepilot.logging_setup import log_event
from pagepilot.models import AdMetric, FacebookAdAccount, User
from pagepilot.services.facebook_graph import GraphClient, FacebookAPIError

DEFAULT_TARGETING = {
    "geo_locations": {"countries": ["US"]},
    "age_min": 18,
    "age_max": 65,
}

INSIGHT_FIELDS = "campaign_id,campaign_name,spend,impressions,clicks,reach,frequency,cpm,cpc,ctr,actions"
AD_ACCOUNT_FIELDS = "id,name,currency,account_status"
ACTIVE_ACCOUNT_STATUS = 1

def _act(ad_account_id: str) -> str:
    return ad_account_id if ad_account_id.startswith("act_") else f"act_{ad_account_id}"

def _marketing_client(access_token: str | None = None) -> GraphClient:
    return GraphClient(access_token or settings.facebook_access_token)

def boost_post(
    post_id: str,
    daily_budget: float,
    duration_days: int,
    targeting: dict | None = None,
    *,
    access_token: str | None = None,
    ad_account_id: str | None = None,
    page_id: str | None = None,
) -> dict[str, Any]:
    """
    Promotes an existing page post. Campaign, ad set and ad are all created
    PAUSED; activation is a separate call.
    """
    ad_account_id = ad_account_id or settings.facebook_ad_account_id
    page_id = page_id or settings.facebook_page_id
    if not (access_token or settings.facebook_access_token) or not ad_account_id or not page_id:
        raise FacebookAPIError("Missing Facebook credentials: access token, ad account id and page id are required")

    client = _marketing_client(access_token)
    act = _act(ad_account_id)
    now = datetime.now(timezone.utc)
    stamp = int(now.timestamp())

    # Post ids from the feed are already "{page}_{post}"
    object_story_id = post_id if "_" in post_id else f"{page_id}_{post_id}"

    log_event("fb_boost_start", post_id=post_id, daily_budget=daily_budget, duration_days=duration_days)

    campaign = client.post(f"{act}/campaigns", {
        "name": f"Boost Post {post_id} - {stamp}",
        "objective": "POST_ENGAGEMENT",
        "status": "PAUSED",
        "special_ad_categories": "[]",
    })
    campaign_id = campaign["id"]

    ad_set = client.post(f"{act}/adsets", {
        "name": f"AdSet for Post {post_id}",
        "campaign_id": campaign_id,
        "daily_budget": int(round(daily_budget * 100)),
        "billing_event": "IMPRESSIONS",
        "optimization_goal": "POST_ENGAGEMENT",
        "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
        "targeting": json.dumps(targeting or DEFAULT_TARGETING),
        "start_time": now.isoformat(),
        "end_time": (now + timedelta(days=duration_days)).isoformat(),
        "status": "PAUSED",
    })
    ad_set_id = ad_set["id"]

    creative = client.post(f"{act}/adcreatives", {
        "name": f"Creative for Post {post_id}",
        "object_story_id": object_story_id,
    })
    creative_id = creative["id"]

    ad = client.post(f"{act}/ads", {
        "name": f"Ad for Post {post_id}",
        "adset_id": ad_set_id,
        "creative": json.dumps({"creative_id": creative_id}),
        "status": "PAUSED",
    })

    log_event("fb_boost_success", post_id=post_id, campaign_id=campaign_id, ad_id=ad["id"])
    return {
        "campaign_id": campaign_id,
        "ad_set_id": ad_set_id,
        "creative_id": creative_id,
        "ad_id": ad["id"],
        "status": "created",
        "daily_budget": daily_budget,
        "duration_days": duration_days,
        "total_budget": daily_budget * duration_days,
    }

def _action_value(actions: list[dict] | None, action_type: str) -> float:
    for a in actions or []:
        if a.get("action_type") == action_type:
            return float(a.get("value", 0) or 0)
    return 0.0

def get_campaign_status(campaign_id: str, access_token: str | None = None) -> dict[str, Any]:
    client = _marketing_client(access_token)
    campaign = client.get(campaign_id, {
        "fields": "id,name,status,objective,created_time,updated_time,"
                  "insights{reach,impressions,spend,clicks,actions,cost_per_action_type}"
    })
    rows = (campaign.get("insights") or {}).get("data") or [{}]
    row = rows[0]

    engagement = _action_value(row.get("actions"), "post_engagement")
    cost_per_engagement = 0.0
    for c in row.get("cost_per_action_type") or []:
        if c.get("action_type") == "post_engagement":
            cost_per_engagement = float(c.get("value", 0) or 0)

    return {
        "campaign_id": campaign.get("id"),
        "name": campaign.get("name"),
        "status": campaign.get("status"),
        "objective": campaign.get("objective"),
        "metrics": {
            "reach": int(row.get("reach", 0) or 0),
            "impressions": int(row.get("impressions", 0) or 0),
            "spend": float(row.get("spend", 0) or 0),
            "clicks": int(row.get("clicks", 0) or 0),
            "post_engagement": int(engagement),
            "cost_per_engagement": cost_per_engagement,
        },
    }

def set_campaign_status(campaign_id: str, status: str, access_token: str | None = None) -> bool:
    if status not in ("ACTIVE", "PAUSED"):
        raise ValueError(f"Unsupported campaign status: {status}")
    result = _marketing_client(access_token).post(campaign_id, {"status": status})
    log_event("fb_campaign_status_changed", campaign_id=campaign_id, status=status)
    return bool(result.get("success", True))

def fetch_campaign_insights(ad_account_id: str, date_preset: str = "last_7d",
                            access_token: str | None = None) -> list[dict[str, Any]]:
    """Campaign insight rows broken down per day (time_increment=1)."""
    client = _marketing_client(access_token)
    data = client.get(f"{_act(ad_account_id)}/insights", {
        "level": "campaign",
        "fields": INSIGHT_FIELDS,
        "date_preset": date_preset,
        "time_increment": 1,
    })
    return data.get("data", [])

def _row_date(row: dict[str, Any]) -> date:
    try:
        return date.fromisoformat(row.get("date_start") or "")
    except ValueError:
        return date.today()

def sync_ad_metrics(db: Session, ad_account: FacebookAdAccount, date_preset: str = "last_7d") -> list[AdMetric]:
    """
    Stores one AdMetric per campaign per day. Days already stored are
    overwritten, so repeated syncs over overlapping windows never double count.
    """
    rows = fetch_campaign_insights(ad_account.ad_account_id, date_preset, access_token=ad_account.access_token)
    existing = {
        (m.campaign_id, m.date): m
        for m in db.query(AdMetric).filter(AdMetric.ad_account_id == ad_account.id)
    }

    stored = []
    for row in rows:
        campaign_id = row.get("campaign_id")
        if not campaign_id:
            continue
        day = _row_date(row)
        metric = existing.get((campaign_id, day))
        if metric is None:
            metric = AdMetric(ad_account_id=ad_account.id, campaign_id=campaign_id, date=day)
            db.add(metric)
            existing[(campaign_id, day)] = metric
        metric.campaign_name = row.get("campaign_name")
        metric.spend = float(row.get("spend", 0) or 0)
        metric.impressions = int(row.get("impressions", 0) or 0)
        metric.clicks = int(row.get("clicks", 0) or 0)
        metric.reach = int(row.get("reach", 0) or 0)
        metric.frequency = float(row.get("frequency", 0) or 0)
        metric.cpm = float(row.get("cpm", 0) or 0)
        metric.cpc = float(row.get("cpc", 0) or 0)
        metric.ctr = float(row.get("ctr", 0) or 0)
        metric.conversions = int(_action_value(row.get("actions"), "offsite_conversion"))
        stored.append(metric)
    db.commit()
    log_event("ad_metrics_synced", ad_account_id=ad_account.id, rows=len(stored))
    return stored

def save_ad_account(db: Session, user: User, account: dict[str, Any], access_token: str | None) -> FacebookAdAccount:
    """Creates or refreshes the user's copy of a Graph ad account record."""
    ad_account_id = _act(str(account["id"]))
    row = db.query(FacebookAdAccount).filter(
        FacebookAdAccount.user_id == user.id,
        FacebookAdAccount.ad_account_id == ad_account_id,
    ).first()
    if not row:
        row = FacebookAdAccount(user_id=user.id, ad_account_id=ad_account_id)
        db.add(row)
    row.name = account.get("name") or ad_account_id
    row.currency = account.get("currency") or "USD"
    row.account_status = account.get("account_status")
    row.is_active = account.get("account_status") in (None, ACTIVE_ACCOUNT_STATUS)
    if access_token:
        row.access_token = access_token
    return row

def connect_ad_account(db: Session, user: User, ad_account_id: str, access_token: str | None = None) -> FacebookAdAccount:
    """Looks the account up on Graph with the given token and stores it."""
    client = _marketing_client(access_token)
    info = client.get(_act(ad_account_id), {"fields": AD_ACCOUNT_FIELDS})
    row = save_ad_account(db, user, info, access_token or client.access_token)
    db.commit()
    log_event("fb_ad_account_connected", user_id=user.id, ad_account_id=row.ad_account_id)
    return row

def ad_credentials(db: Session, user: User | None) -> dict[str, str]:
    """Keyword arguments for boost_post drawn from the user's first active ad account."""
    if not user:
        return {}
    account = db.query(FacebookAdAccount).filter(
        FacebookAdAccount.user_id == user.id,
        FacebookAdAccount.is_active == True,
    ).order_by(FacebookAdAccount.id.asc()).first()
    creds: dict[str, str | None] = {"page_id": user.facebook_page_id}
    if account:
        creds["ad_account_id"] = account.ad_account_id
        creds["access_token"] = account.access_token
    return {k: v for k, v in creds.items() if v}
