from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pagepilot.config import settings
from pagepilot.db import get_db
from pagepilot.models import User
from pagepilot.security.auth import require_superadmin
from pagepilot.services.rate_limit import admin_limiter, get_rate_limit_stats
from pagepilot.services.realtime import manager
from pagepilot.services.scheduler import scheduler_status

router = APIRouter(prefix="/api/system", tags=["system"])

def _integrations() -> dict[str, bool]:
    return {
        "openai": bool(settings.openai_api_key),
        "anthropic": bool(settings.anthropic_api_key),
        "facebook_app": bool(settings.facebook_app_id and settings.facebook_app_secret),
        "facebook_page_token": bool(settings.page_token),
        "facebook_ads": bool(settings.facebook_ad_account_id),
        "conversions_api": bool(settings.facebook_pixel_id),
        "webhook_verify_token": bool(settings.fb_verify_token),
        "axiom": bool(settings.axiom_token and settings.axiom_dataset),
    }

@router.get("/health")
def system_health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError as e:
        database = f"error: {type(e).__name__}"

    sched = scheduler_status()
    return {
        "status": "ok" if database == "connected" else "degraded",
        "now": datetime.now(timezone.utc).isoformat(),
        "database": database,
        "scheduler": {"running": sched["running"], "jobs": len(sched["jobs"])},
        "realtime": {"connections": len(manager.active_connections), "rooms": len(manager.rooms)},
        "integrations": _integrations(),
    }

@router.get("/rate-limits", dependencies=[Depends(admin_limiter)])
def rate_limits(user: User = Depends(require_superadmin)):
    return get_rate_limit_stats()

@router.get("/scheduler", dependencies=[Depends(admin_limiter)])
def scheduler(user: User = Depends(require_superadmin)):
    return scheduler_status()
