from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pagepilot.db import get_db
from pagepilot.models import User, FacebookPage, AIRecommendation, Notification
from pagepilot.schemas import FacebookPageOut, RecommendationOut, NotificationOut
from pagepilot.security.auth import require_user
from pagepilot.services.dashboard import get_dashboard_metrics
from pagepilot.services.optimizer import generate_recommendations
from pagepilot.services.realtime import send_metrics_update

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

@router.get("/metrics")
def metrics(user: User = Depends(require_user), db: Session = Depends(get_db)):
    data = get_dashboard_metrics(db, user)
    send_metrics_update(user.id, data)
    return data

@router.get("/pages", response_model=list[FacebookPageOut])
def pages(user: User = Depends(require_user), db: Session = Depends(get_db)):
    return db.query(FacebookPage).filter(
        FacebookPage.user_id == user.id,
        FacebookPage.is_active == True,
    ).order_by(FacebookPage.id.asc()).all()

@router.get("/recommendations", response_model=list[RecommendationOut])
def recommendations(include_implemented: bool = False, user: User = Depends(require_user), db: Session = Depends(get_db)):
    q = db.query(AIRecommendation).filter(AIRecommendation.user_id == user.id)
    if not include_implemented:
        q = q.filter(AIRecommendation.is_implemented == False)
    return q.order_by(AIRecommendation.id.desc()).all()

@router.post("/recommendations/generate", response_model=list[RecommendationOut])
def regenerate_recommendations(user: User = Depends(require_user), db: Session = Depends(get_db)):
    return generate_recommendations(db, user)

@router.post("/recommendations/{rec_id}/implement", response_model=RecommendationOut)
def implement_recommendation(rec_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    rec = db.get(AIRecommendation, rec_id)
    if not rec or rec.user_id != user.id:
        raise HTTPException(status_code=404, detail="Recommendation not found")
    rec.is_implemented = True
    rec.implemented_at = datetime.now(timezone.utc)
    db.commit()
    return rec

@router.get("/notifications", response_model=list[NotificationOut])
def notifications(unread_only: bool = False, user: User = Depends(require_user), db: Session = Depends(get_db)):
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.is_read == False)
    return q.order_by(Notification.id.desc()).limit(100).all()

@router.post("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    n = db.get(Notification, notification_id)
    if not n or n.user_id != user.id:
        raise HTTPException(status_code=404, detail="Notification not found")
    n.is_read = True
    n.read_at = datetime.now(timezone.utc)
    db.commit()
    return {"success": True}
