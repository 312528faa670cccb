import secrets
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Form, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from pagepilot.config import settings
from pagepilot.db import get_db
from pagepilot.logging_setup import log_event
from pagepilot.models import User, FacebookPage, ScheduledBoost
from pagepilot.schemas import (
    FacebookPageOut, PublishPostIn, BoostPostIn, ScheduledBoostIn, ScheduledBoostOut,
)
from pagepilot.security.auth import require_user, require_superadmin
from pagepilot.security.rbac import get_owned_campaign_token, get_owned_page, get_primary_page
from pagepilot.services import data_deletion, marketing, token_manager
from pagepilot.services.auto_content import recommend_time_slots
from pagepilot.services.auto_post import get_auto_post_status, run_auto_facebook_post
from pagepilot.services.facebook_graph import (
    FacebookAPIError, GraphClient, exchange_code_for_token, get_long_lived_token, get_oauth_url, page_client,
)
from pagepilot.services.optimizer import analyze_content_trends, fetch_performance_scores, store_post_scores
from pagepilot.services.rate_limit import facebook_limiter, admin_limiter
from pagepilot.services.scheduler import next_run_time
from pagepilot.services.webhooks import subscribe_page

router = APIRouter(prefix="/api/facebook", tags=["facebook"])

def _callback_url() -> str:
    return f"{settings.public_base_url.rstrip('/')}/api/facebook/callback"

def _bad_gateway(e: FacebookAPIError) -> HTTPException:
    return HTTPException(status_code=502, detail={"message": e.message, "code": e.code, "fbtrace_id": e.fbtrace_id})

@router.get("/auth")
def facebook_auth(request: Request, user: User = Depends(require_user)):
    state = secrets.token_urlsafe(16)
    try:
        url = get_oauth_url(_callback_url(), state=state)
    except FacebookAPIError as e:
        raise HTTPException(status_code=500, detail=e.message)
    response = RedirectResponse(url)
    response.set_cookie("fb_oauth_state", state, httponly=True, samesite="lax", secure=True, max_age=600)
    return response

@router.get("/callback")
def facebook_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    if error or not code:
        raise HTTPException(status_code=400, detail=error or "Missing authorization code")
    expected_state = request.cookies.get("fb_oauth_state")
    if not expected_state or not state or not secrets.compare_digest(state, expected_state):
        raise HTTPException(status_code=400, detail="OAuth state mismatch")

    try:
        short = exchange_code_for_token(code, _callback_url())
        long_lived = get_long_lived_token(short["access_token"])
        client = GraphClient(long_lived["access_token"])
        me = client.get_me()
        pages = client.get_pages()
    except FacebookAPIError as e:
        raise _bad_gateway(e)

    try:
        ad_accounts = client.get_ad_accounts()
    except FacebookAPIError as e:
        # ads_read is optional; pages still connect without it
        log_event("fb_ad_accounts_unavailable", level="warning", user_id=user.id, error=e.message)
        ad_accounts = []

    user.facebook_user_id = me.get("id")
    for p in pages:
        page = db.query(FacebookPage).filter(FacebookPage.user_id == user.id, FacebookPage.page_id == p["id"]).first()
        if not page:
            page = FacebookPage(user_id=user.id, page_id=p["id"])
            db.add(page)
        page.page_name = p["name"]
        page.access_token = p["access_token"]
        page.category = p["category"]
        page.follower_count = p["follower_count"]
        page.is_active = True
    if pages and not user.facebook_page_id:
        user.facebook_page_id = pages[0]["id"]
    for account in ad_accounts:
        marketing.save_ad_account(db, user, account, long_lived["access_token"])
    db.commit()
    log_event("fb_oauth_connected", user_id=user.id, pages=len(pages), ad_accounts=len(ad_accounts))

    response = RedirectResponse("/dashboard")
    response.delete_cookie("fb_oauth_state")
    return response

@router.get("/pages", response_model=list[FacebookPageOut])
def list_pages(user: User = Depends(require_user), db: Session = Depends(get_db)):
    return db.query(FacebookPage).filter(FacebookPage.user_id == user.id).order_by(FacebookPage.id.asc()).all()

@router.get("/pages/{page_ref}/insights", dependencies=[Depends(facebook_limiter)])
def page_insights(page_ref: str, days: int = Query(30, ge=1, le=90),
                  user: User = Depends(require_user), db: Session = Depends(get_db)):
    page = get_owned_page(db, user, page_ref)
    try:
        return {"page_id": page.page_id, "insights": page_client(page).get_page_insights(page.page_id, days=days)}
    except FacebookAPIError as e:
        raise _bad_gateway(e)

@router.get("/pages/{page_ref}/posts", dependencies=[Depends(facebook_limiter)])
def recent_posts(page_ref: str, limit: int = Query(10, ge=1, le=50),
                 user: User = Depends(require_user), db: Session = Depends(get_db)):
    page = get_owned_page(db, user, page_ref)
    try:
        return {"page_id": page.page_id, "posts": page_client(page).get_recent_posts(page.page_id, limit=limit)}
    except FacebookAPIError as e:
        raise _bad_gateway(e)

@router.get("/pages/{page_ref}/performance", dependencies=[Depends(facebook_limiter)])
def page_performance(page_ref: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    page = get_owned_page(db, user, page_ref)
    try:
        scores = fetch_performance_scores(page_client(page), page.page_id)
    except FacebookAPIError as e:
        raise _bad_gateway(e)
    if store_post_scores(db, page, scores):
        db.commit()
    return {"scores": scores, **analyze_content_trends(scores)}

@router.post("/pages/{page_ref}/subscribe", dependencies=[Depends(facebook_limiter)])
def subscribe_webhooks(page_ref: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    page = get_owned_page(db, user, page_ref)
    try:
        ok = subscribe_page(db, page)
    except FacebookAPIError as e:
        raise _bad_gateway(e)
    return {"success": ok, "fields": page.webhook_fields}

@router.post("/publish-post", dependencies=[Depends(facebook_limiter)])
def publish_post(payload: PublishPostIn, user: User = Depends(require_user), db: Session = Depends(get_db)):
    page = get_owned_page(db, user, payload.page_id) if payload.page_id else get_primary_page(user, db)
    if payload.scheduled_time and payload.scheduled_time <= datetime.now(timezone.utc):
        raise HTTPException(status_code=400, detail="scheduled_time must be in the future")
    try:
        result = page_client(page).publish_post(
            page.page_id, payload.message, link=payload.link, scheduled_time=payload.scheduled_time,
        )
    except FacebookAPIError as e:
        raise _bad_gateway(e)
    return {"success": True, "post_id": result.get("id"), "scheduled": bool(payload.scheduled_time)}

@router.get("/token/validate", dependencies=[Depends(admin_limiter)])
def validate_tokens(user: User = Depends(require_superadmin)):
    return token_manager.check_all_credentials()

@router.post("/boost-post", dependencies=[Depends(facebook_limiter)])
def boost(payload: BoostPostIn, user: User = Depends(require_user), db: Session = Depends(get_db)):
    page = get_primary_page(user, db)
    try:
        result = marketing.boost_post(
            payload.post_id, payload.daily_budget, payload.duration_days, payload.targeting,
            **{**marketing.ad_credentials(db, user), "page_id": page.page_id},
        )
    except FacebookAPIError as e:
        raise _bad_gateway(e)

    # recorded so the campaign can later be activated or paused by its owner
    db.add(ScheduledBoost(
        user_id=user.id,
        post_id=payload.post_id,
        date=datetime.now(timezone.utc).date(),
        budget=payload.daily_budget,
        duration_days=payload.duration_days,
        status="active",
        campaign_id=result["campaign_id"],
    ))
    db.commit()
    return result

@router.get("/campaigns/{campaign_id}", dependencies=[Depends(facebook_limiter)])
def campaign_status(campaign_id: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    token = get_owned_campaign_token(db, user, campaign_id)
    try:
        return marketing.get_campaign_status(campaign_id, access_token=token)
    except FacebookAPIError as e:
        raise _bad_gateway(e)

def _set_status(db: Session, user: User, campaign_id: str, status: str) -> dict:
    token = get_owned_campaign_token(db, user, campaign_id)
    try:
        ok = marketing.set_campaign_status(campaign_id, status, access_token=token)
    except FacebookAPIError as e:
        raise _bad_gateway(e)
    log_event("campaign_status_requested", user_id=user.id, campaign_id=campaign_id, status=status)
    return {"success": ok, "status": status}

@router.post("/campaigns/{campaign_id}/activate", dependencies=[Depends(facebook_limiter)])
def activate_campaign(campaign_id: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    return _set_status(db, user, campaign_id, "ACTIVE")

@router.post("/campaigns/{campaign_id}/pause", dependencies=[Depends(facebook_limiter)])
def pause_campaign(campaign_id: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    return _set_status(db, user, campaign_id, "PAUSED")

@router.get("/scheduled-boosts", response_model=list[ScheduledBoostOut])
def list_scheduled_boosts(user: User = Depends(require_user), db: Session = Depends(get_db)):
    return db.query(ScheduledBoost).filter(ScheduledBoost.user_id == user.id).order_by(ScheduledBoost.date.desc()).all()

@router.post("/scheduled-boosts", response_model=ScheduledBoostOut, status_code=201)
def create_scheduled_boost(payload: ScheduledBoostIn, user: User = Depends(require_user), db: Session = Depends(get_db)):
    if payload.date < datetime.now(timezone.utc).date():
        raise HTTPException(status_code=400, detail="Boost date cannot be in the past")
    boost = ScheduledBoost(user_id=user.id, status="scheduled", **payload.model_dump())
    db.add(boost)
    db.commit()
    return boost

@router.delete("/scheduled-boosts/{boost_id}")
def cancel_scheduled_boost(boost_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    boost = db.get(ScheduledBoost, boost_id)
    if not boost or boost.user_id != user.id:
        raise HTTPException(status_code=404, detail="Scheduled boost not found")
    if boost.status != "scheduled":
        raise HTTPException(status_code=409, detail=f"Boost is already {boost.status}")
    boost.status = "cancelled"
    db.commit()
    return {"success": True}

@router.get("/recommend-time-slots", dependencies=[Depends(facebook_limiter)])
def time_slots(user: User = Depends(require_user), db: Session = Depends(get_db)):
    slots = recommend_time_slots(db, user)
    return {"slots": [{**s, "scheduled_for": s["scheduled_for"].isoformat()} for s in slots]}

@router.get("/auto-post/status")
def auto_post_status(user: User = Depends(require_user), db: Session = Depends(get_db)):
    return get_auto_post_status(db, next_run_time("auto_post"))

@router.post("/auto-post/trigger", dependencies=[Depends(admin_limiter)])
def trigger_auto_post(user: User = Depends(require_superadmin), db: Session = Depends(get_db)):
    return run_auto_facebook_post(db)

@router.post("/data-deletion")
def data_deletion_callback(signed_request: str = Form(...), db: Session = Depends(get_db)):
    try:
        return data_deletion.process_deletion_request(db, signed_request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@router.get("/data-deletion/status/{code}")
def data_deletion_status(code: str, db: Session = Depends(get_db)):
    return data_deletion.get_deletion_status(db, code)
