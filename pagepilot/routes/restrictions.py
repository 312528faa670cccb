from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pagepilot.db import get_db
from pagepilot.models import User, RestrictionAlert
from pagepilot.schemas import AlertOut
from pagepilot.security.auth import require_user

router = APIRouter(prefix="/api/restrictions", tags=["restrictions"])

@router.get("/alerts", response_model=list[AlertOut])
def list_alerts(include_resolved: bool = False, user: User = Depends(require_user), db: Session = Depends(get_db)):
    q = db.query(RestrictionAlert).filter(RestrictionAlert.user_id == user.id)
    if not include_resolved:
        q = q.filter(RestrictionAlert.is_resolved == False)
    return q.order_by(RestrictionAlert.id.desc()).all()

@router.post("/alerts/{alert_id}/resolve", response_model=AlertOut)
def resolve_alert(alert_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    alert = db.get(RestrictionAlert, alert_id)
    if not alert or alert.user_id != user.id:
        raise HTTPException(status_code=404, detail="Alert not found")
    alert.is_resolved = True
    alert.resolved_at = datetime.now(timezone.utc)
    db.commit()
    return alert
