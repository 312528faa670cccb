from fastapi import APIRouter, Depends, HTTPException
from openai import OpenAIError
from sqlalchemy.orm import Session

from pagepilot.db import get_db
from pagepilot.models import User
from pagepilot.schemas import TextIn, GeneratePostIn, PlanContentIn, ClaudeGenerateIn
from pagepilot.security.auth import require_user
from pagepilot.services import claude, llm
from pagepilot.services.auto_content import top_posts
from pagepilot.services.rate_limit import ai_limiter
from pagepilot.services.realtime import user_room
from pagepilot.services.sentiment import analyze_text

router = APIRouter(prefix="/api/ai", tags=["ai"], dependencies=[Depends(ai_limiter)])

@router.post("/analyze-sentiment")
def analyze_sentiment(payload: TextIn, user: User = Depends(require_user)):
    return analyze_text(payload.text, source="api", room=user_room(user.id))

@router.post("/generate-post")
def generate_post(payload: GeneratePostIn, user: User = Depends(require_user)):
    try:
        return llm.generate_facebook_post(
            payload.topic,
            business_context=payload.business_context or user.campaign_goal,
            content_type=payload.content_type,
        )
    except (OpenAIError, RuntimeError, ValueError) as e:
        raise HTTPException(status_code=503, detail=f"Content generation unavailable: {e}")

@router.post("/analyze-post")
def analyze_post(payload: TextIn, user: User = Depends(require_user)):
    return claude.analyze_content(payload.text)

@router.post("/generate-content")
def generate_content(payload: PlanContentIn, user: User = Depends(require_user), db: Session = Depends(get_db)):
    plan = payload.plan or user.subscription_plan or "free"
    # Users cannot request a tier above their subscription
    if not user.is_superadmin and payload.plan and payload.plan != (user.subscription_plan or "free"):
        raise HTTPException(status_code=403, detail="Requested plan does not match your subscription")
    return llm.generate_plan_content(plan, payload.topic, top_posts(db, user))

@router.post("/claude/generate")
def claude_generate(payload: ClaudeGenerateIn, user: User = Depends(require_user)):
    try:
        return claude.generate_content(payload.prompt, payload.content_type, payload.brand, payload.audience)
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
