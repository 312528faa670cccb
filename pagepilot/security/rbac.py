from fastapi import HTTPException, Depends, status
from sqlalchemy.orm import Session
from pagepilot.db import get_db
from pagepilot.models import User, FacebookPage, FacebookAdAccount, AdMetric, ScheduledBoost
from pagepilot.security.auth import require_user

def get_owned_page(db: Session, user: User, page_ref: str | int) -> FacebookPage:
    """
    Resolves a page by internal id or Facebook page id, scoped to the caller.
    Several users may connect the same Facebook page, so a Facebook id only
    ever resolves to the caller's own copy. Superadmins may access any page.
    """
    q = db.query(FacebookPage)
    ref = str(page_ref)
    if ref.isdigit() and len(ref) < 10:
        page = q.filter(FacebookPage.id == int(ref)).first()
    else:
        q = q.filter(FacebookPage.page_id == ref)
        page = q.filter(FacebookPage.user_id == user.id).first()
        if not page and user.is_superadmin:
            page = q.first()

    if not page:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Page not found")
    if page.user_id != user.id and not user.is_superadmin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this page"
        )
    return page

def get_owned_ad_account(db: Session, user: User, ad_account_id: int) -> FacebookAdAccount:
    account = db.get(FacebookAdAccount, ad_account_id)
    if not account:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ad account not found")
    if account.user_id != user.id and not user.is_superadmin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this ad account"
        )
    return account

def get_owned_campaign_token(db: Session, user: User, campaign_id: str) -> str | None:
    """
    Checks that a campaign was created by one of the caller's boosts or shows
    up in their synced ad metrics. Returns the ad account token to act with,
    or None to use the configured marketing token.
    """
    boost = db.query(ScheduledBoost).filter(
        ScheduledBoost.user_id == user.id,
        ScheduledBoost.campaign_id == campaign_id,
    ).first()
    account = db.query(FacebookAdAccount).join(AdMetric, AdMetric.ad_account_id == FacebookAdAccount.id).filter(
        FacebookAdAccount.user_id == user.id,
        AdMetric.campaign_id == campaign_id,
    ).first()

    if not boost and not account and not user.is_superadmin:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    if account:
        return account.access_token
    if boost:
        fallback = db.query(FacebookAdAccount).filter(
            FacebookAdAccount.user_id == user.id,
            FacebookAdAccount.is_active == True,
        ).order_by(FacebookAdAccount.id.asc()).first()
        return fallback.access_token if fallback else None
    return None

def get_primary_page(
    user: User = Depends(require_user),
    db: Session = Depends(get_db)
) -> FacebookPage:
    """The user's onboarding page, or their first active page."""
    q = db.query(FacebookPage).filter(FacebookPage.user_id == user.id, FacebookPage.is_active == True)
    page = None
    if user.facebook_page_id:
        page = q.filter(FacebookPage.page_id == user.facebook_page_id).first()
    if not page:
        page = q.order_by(FacebookPage.id.asc()).first()
    if not page:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No Facebook page connected")
    return page
