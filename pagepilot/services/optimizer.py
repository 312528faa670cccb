"""
Rule-based optimization over stored and fetched metrics.

Nothing here calls a model; thresholds mirror what the dashboard surfaces as
recommendations.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from pagepilot.logging_setup import log_event
from pagepilot.models import AdMetric, AIRecommendation, ContentQueueItem, FacebookAdAccount, FacebookPage, User
from pagepilot.services.facebook_graph import GraphClient, FacebookAPIError, page_client
from pagepilot.services.realtime import send_ai_recommendation

logger = logging.getLogger(__name__)

POST_METRICS = ["post_impressions", "post_engaged_users"]

LOW_CTR = 1.0           # percent
HIGH_CTR = 2.0
HIGH_CPC = 2.0
HIGH_FREQUENCY = 3.0
HIGH_CPM = 20.0
WASTED_SPEND = 50.0

def score_post(impressions: float, engaged: float) -> float:
    return round(engaged / max(impressions or 0, 1) * 100, 2)

def fetch_performance_scores(client: GraphClient, page_id: str, limit: int = 5) -> list[dict[str, Any]]:
    posts = client.get_recent_posts(page_id, limit=limit)
    scores = []
    for post in posts:
        try:
            insights = client.get_post_insights(post["id"], POST_METRICS)
            score = score_post(insights.get("post_impressions", 1) or 1, insights.get("post_engaged_users", 0))
        except FacebookAPIError as e:
            logger.warning("Insights unavailable for post %s: %s", post["id"], e.message)
            score = 0.0
        scores.append({
            "post_id": post["id"],
            "message": (post.get("message") or "")[:100],
            "score": score,
            "created_time": post.get("created_time"),
        })
    return scores

def analyze_content_trends(scores: list[dict[str, Any]]) -> dict[str, Any]:
    """Scores are expected newest first, as returned by the feed."""
    if not scores:
        return {
            "average_score": 0,
            "trend": "stable",
            "recommendation": "Not enough posts to analyze. Start publishing consistently.",
            "top_post": None,
        }

    values = [s["score"] for s in scores]
    average = sum(values) / len(values)

    recent, older = values[:3], values[3:]
    trend = "stable"
    if older:
        recent_avg = sum(recent) / len(recent)
        older_avg = sum(older) / len(older)
        if recent_avg > older_avg * 1.1:
            trend = "improving"
        elif recent_avg < older_avg * 0.9:
            trend = "declining"

    if average < 30:
        recommendation = "Engagement is low. Try questions, polls and visual content to spark interaction."
    elif average < 60:
        recommendation = "Engagement is moderate. Double down on the formats of your best posts."
    else:
        recommendation = "Engagement is strong. Consider boosting top posts to reach new audiences."

    return {
        "average_score": round(average, 2),
        "trend": trend,
        "recommendation": recommendation,
        "top_post": max(scores, key=lambda s: s["score"]),
    }

def store_post_scores(db: Session, page: FacebookPage, scores: list[dict[str, Any]]) -> int:
    """
    Writes fetched scores onto the page's published queue items, matched on
    the Graph post id. Returns how many items were updated; does not commit.
    """
    by_post = {s["post_id"]: s["score"] for s in scores if s.get("post_id")}
    if not by_post:
        return 0

    items = db.query(ContentQueueItem).filter(
        ContentQueueItem.page_id == page.id,
        ContentQueueItem.external_post_id != None,
    ).all()
    now = datetime.now(timezone.utc)
    updated = 0
    for item in items:
        # the feed returns "<page>_<post>" while some publish calls return the bare post id
        score = by_post.get(item.external_post_id)
        if score is None:
            score = by_post.get(f"{page.page_id}_{item.external_post_id}")
        if score is None:
            continue
        item.performance_score = score
        item.score_updated_at = now
        updated += 1
    return updated

def refresh_post_scores(db: Session, client_factory: Callable[[FacebookPage], GraphClient] = page_client,
                        limit: int = 25) -> dict[str, int]:
    page_ids = {
        pid for (pid,) in db.query(ContentQueueItem.page_id).filter(
            ContentQueueItem.external_post_id != None,
            ContentQueueItem.page_id != None,
        ).distinct()
    }
    pages = []
    if page_ids:
        pages = db.query(FacebookPage).filter(FacebookPage.id.in_(page_ids), FacebookPage.is_active == True).all()

    summary = {"pages": 0, "updated": 0, "failed": 0}
    for page in pages:
        try:
            scores = fetch_performance_scores(client_factory(page), page.page_id, limit=limit)
        except FacebookAPIError as e:
            summary["failed"] += 1
            log_event("post_scores_failed", level="warning", page_id=page.page_id, error=e.message)
            continue
        summary["pages"] += 1
        summary["updated"] += store_post_scores(db, page, scores)
    db.commit()
    log_event("post_scores_refreshed", **summary)
    return summary

def run_refresh_post_scores_job(db_factory: Callable[[], Session]) -> dict[str, int]:
    db = db_factory()
    try:
        return refresh_post_scores(db)
    finally:
        db.close()

def evaluate_campaign(metrics: dict[str, Any]) -> list[dict[str, Any]]:
    name = metrics.get("campaign_name") or metrics.get("campaign_id")
    ctr = float(metrics.get("ctr") or 0)
    cpc = float(metrics.get("cpc") or 0)
    cpm = float(metrics.get("cpm") or 0)
    frequency = float(metrics.get("frequency") or 0)
    spend = float(metrics.get("spend") or 0)
    conversions = int(metrics.get("conversions") or 0)

    recs = []
    if metrics.get("impressions") and ctr < LOW_CTR:
        recs.append({
            "type": "content",
            "title": f"Refresh creative for {name}",
            "description": f"CTR is {ctr:.2f}%, below the {LOW_CTR:.0f}% benchmark. Test new headlines and images.",
            "priority": "high",
        })
    if cpc > HIGH_CPC:
        recs.append({
            "type": "audience",
            "title": f"Narrow targeting for {name}",
            "description": f"Cost per click is ${cpc:.2f}. Refine the audience to more qualified users.",
            "priority": "medium",
        })
    if frequency > HIGH_FREQUENCY:
        recs.append({
            "type": "content",
            "title": f"Ad fatigue detected on {name}",
            "description": f"Frequency is {frequency:.1f}. Rotate creatives or expand the audience.",
            "priority": "medium",
        })
    if spend > WASTED_SPEND and conversions == 0:
        recs.append({
            "type": "budget",
            "title": f"Pause or rebalance budget for {name}",
            "description": f"${spend:.2f} spent with no conversions. Move budget to better performing campaigns.",
            "priority": "high",
        })
    if cpm > HIGH_CPM:
        recs.append({
            "type": "timing",
            "title": f"Adjust delivery schedule for {name}",
            "description": f"CPM is ${cpm:.2f}. Try dayparting to run ads at lower competition hours.",
            "priority": "low",
        })
    if ctr > HIGH_CTR and conversions > 0:
        recs.append({
            "type": "budget",
            "title": f"Scale {name}",
            "description": f"CTR of {ctr:.2f}% with {conversions} conversions. Increase budget by 20%.",
            "priority": "medium",
        })

    for r in recs:
        r["actionable"] = {"campaign_id": metrics.get("campaign_id")}
    return recs

def aggregate_campaign_metrics(db: Session, user: User) -> list[dict[str, Any]]:
    rows = (
        db.query(
            AdMetric.campaign_id,
            func.max(AdMetric.campaign_name),
            func.sum(AdMetric.spend),
            func.sum(AdMetric.impressions),
            func.sum(AdMetric.clicks),
            func.sum(AdMetric.conversions),
            func.avg(AdMetric.frequency),
            func.avg(AdMetric.cpm),
        )
        .join(FacebookAdAccount, FacebookAdAccount.id == AdMetric.ad_account_id)
        .filter(FacebookAdAccount.user_id == user.id)
        .group_by(AdMetric.campaign_id)
        .all()
    )

    campaigns = []
    for campaign_id, name, spend, impressions, clicks, conversions, frequency, cpm in rows:
        impressions = int(impressions or 0)
        clicks = int(clicks or 0)
        spend = float(spend or 0)
        campaigns.append({
            "campaign_id": campaign_id,
            "campaign_name": name,
            "spend": spend,
            "impressions": impressions,
            "clicks": clicks,
            "conversions": int(conversions or 0),
            "ctr": clicks / impressions * 100 if impressions else 0.0,
            "cpc": spend / clicks if clicks else 0.0,
            "frequency": float(frequency or 0),
            "cpm": float(cpm or 0),
        })
    return campaigns

def generate_recommendations(db: Session, user: User) -> list[AIRecommendation]:
    open_titles = {
        title for (title,) in db.query(AIRecommendation.title).filter(
            AIRecommendation.user_id == user.id,
            AIRecommendation.is_implemented == False,
        )
    }

    created = []
    for campaign in aggregate_campaign_metrics(db, user):
        for rec in evaluate_campaign(campaign):
            if rec["title"] in open_titles:
                continue
            row = AIRecommendation(user_id=user.id, **rec)
            db.add(row)
            created.append(row)
            open_titles.add(rec["title"])

    db.commit()
    for row in created:
        send_ai_recommendation(user.id, {"id": row.id, "type": row.type, "title": row.title, "priority": row.priority})
    return created
