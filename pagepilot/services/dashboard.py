from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from pagepilot.models import (
    AdMetric, ContentQueueItem, CustomerInteraction, FacebookAdAccount, FacebookPage,
    Notification, RestrictionAlert, User,
)

def get_dashboard_metrics(db: Session, user: User) -> dict[str, Any]:
    spend, impressions, clicks, conversions = db.query(
        func.coalesce(func.sum(AdMetric.spend), 0),
        func.coalesce(func.sum(AdMetric.impressions), 0),
        func.coalesce(func.sum(AdMetric.clicks), 0),
        func.coalesce(func.sum(AdMetric.conversions), 0),
    ).join(FacebookAdAccount, FacebookAdAccount.id == AdMetric.ad_account_id).filter(
        FacebookAdAccount.user_id == user.id
    ).one()

    page_ids = [pid for (pid,) in db.query(FacebookPage.id).filter(FacebookPage.user_id == user.id)]

    interactions = {"total": 0, "pending": 0, "responded": 0, "escalated": 0}
    avg_response_time = 0.0
    if page_ids:
        for status, count in db.query(CustomerInteraction.status, func.count(CustomerInteraction.id)).filter(
            CustomerInteraction.page_id.in_(page_ids)
        ).group_by(CustomerInteraction.status):
            interactions[status] = count
            interactions["total"] += count
        avg_response_time = db.query(func.avg(CustomerInteraction.response_time)).filter(
            CustomerInteraction.page_id.in_(page_ids),
            CustomerInteraction.response_time != None,
        ).scalar() or 0.0

    queue_counts = dict(db.query(ContentQueueItem.status, func.count(ContentQueueItem.id)).filter(
        ContentQueueItem.user_id == user.id
    ).group_by(ContentQueueItem.status).all())

    spend = float(spend)
    impressions = int(impressions)
    clicks = int(clicks)
    return {
        "total_spend": round(spend, 2),
        "impressions": impressions,
        "clicks": clicks,
        "conversions": int(conversions),
        "ctr": round(clicks / impressions * 100, 2) if impressions else 0.0,
        "cpc": round(spend / clicks, 2) if clicks else 0.0,
        "interactions": interactions,
        "avg_response_time": round(float(avg_response_time), 1),
        "pages_connected": len(page_ids),
        "active_alerts": db.query(RestrictionAlert).filter(
            RestrictionAlert.user_id == user.id,
            RestrictionAlert.is_resolved == False,
        ).count(),
        "unread_notifications": db.query(Notification).filter(
            Notification.user_id == user.id,
            Notification.is_read == False,
        ).count(),
        "posts_scheduled": queue_counts.get("scheduled", 0) + queue_counts.get("remote_scheduled", 0),
        "posts_published": queue_counts.get("published", 0),
        "posts_failed": queue_counts.get("failed", 0),
    }
