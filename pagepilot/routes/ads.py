from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pagepilot.db import get_db
from pagepilot.models import User, AdMetric, FacebookAdAccount
from pagepilot.schemas import OptimizeIn, ComplianceIn, AdCopyIn, AdAccountConnectIn, AdAccountOut
from pagepilot.security.auth import require_user
from pagepilot.security.rbac import get_owned_ad_account
from pagepilot.services import llm
from pagepilot.services.facebook_graph import FacebookAPIError
from pagepilot.services.marketing import connect_ad_account, sync_ad_metrics
from pagepilot.services.optimizer import evaluate_campaign, aggregate_campaign_metrics
from pagepilot.services.policy import keyword_flags
from pagepilot.services.rate_limit import ai_limiter, facebook_limiter

router = APIRouter(prefix="/api/ads", tags=["ads"])

@router.post("/optimize", dependencies=[Depends(ai_limiter)])
def optimize(payload: OptimizeIn, user: User = Depends(require_user), db: Session = Depends(get_db)):
    ad_data = payload.ad_data or {"campaigns": aggregate_campaign_metrics(db, user)}
    rules = []
    for campaign in ad_data.get("campaigns") or [ad_data]:
        if isinstance(campaign, dict):
            rules.extend(evaluate_campaign(campaign))

    suggestions = llm.generate_ad_optimization_suggestions(
        ad_data,
        objective=payload.objective or user.campaign_goal,
        audience=payload.target_audience or user.target_audience,
    )
    return {"rule_based": rules, "ai_suggestions": suggestions}

@router.post("/check-compliance", dependencies=[Depends(ai_limiter)])
def check_compliance(payload: ComplianceIn, user: User = Depends(require_user)):
    result = llm.check_policy_compliance(payload.content, payload.target_audience, payload.category)
    return {**result, "keyword_flags": keyword_flags(payload.content)}

@router.post("/generate-copy", dependencies=[Depends(ai_limiter)])
def generate_copy(payload: AdCopyIn, user: User = Depends(require_user)):
    return llm.generate_ad_copy(payload.product, payload.target_audience, payload.objective, payload.tone)

@router.get("/accounts", response_model=list[AdAccountOut])
def list_ad_accounts(user: User = Depends(require_user), db: Session = Depends(get_db)):
    return db.query(FacebookAdAccount).filter(FacebookAdAccount.user_id == user.id).order_by(FacebookAdAccount.id.asc()).all()

@router.post("/accounts", response_model=AdAccountOut, status_code=201, dependencies=[Depends(facebook_limiter)])
def connect_account(payload: AdAccountConnectIn, user: User = Depends(require_user), db: Session = Depends(get_db)):
    try:
        return connect_ad_account(db, user, payload.ad_account_id, payload.access_token)
    except FacebookAPIError as e:
        raise HTTPException(status_code=502, detail=e.message)

@router.post("/accounts/{account_id}/sync", dependencies=[Depends(facebook_limiter)])
def sync_metrics(account_id: int, date_preset: str = "last_7d",
                 user: User = Depends(require_user), db: Session = Depends(get_db)):
    account = get_owned_ad_account(db, user, account_id)
    try:
        rows = sync_ad_metrics(db, account, date_preset)
    except FacebookAPIError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return {"synced": len(rows)}

@router.get("/performance-metrics/{campaign_id}")
def campaign_metrics(campaign_id: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    rows = db.query(AdMetric).join(FacebookAdAccount, FacebookAdAccount.id == AdMetric.ad_account_id).filter(
        FacebookAdAccount.user_id == user.id,
        AdMetric.campaign_id == campaign_id,
    ).order_by(AdMetric.date.desc(), AdMetric.id.desc()).all()
    if not rows:
        raise HTTPException(status_code=404, detail="No metrics stored for this campaign")
    return [
        {
            "date": r.date.isoformat() if r.date else None,
            "spend": r.spend,
            "impressions": r.impressions,
            "clicks": r.clicks,
            "conversions": r.conversions,
            "ctr": r.ctr,
            "cpc": r.cpc,
            "cpm": r.cpm,
            "frequency": r.frequency,
        }
        for r in rows
    ]
