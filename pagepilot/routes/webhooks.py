import json

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse

from pagepilot.config import settings
from pagepilot.db import SessionLocal
from pagepilot.logging_setup import log_event
from pagepilot.services.rate_limit import webhook_limiter
from pagepilot.services.webhooks import handle_verification, run_webhook_event, verify_signature

router = APIRouter(prefix="/api/facebook", tags=["webhooks"])

@router.get("/webhook", response_class=PlainTextResponse)
def verify_webhook(request: Request):
    params = request.query_params
    challenge = handle_verification(params.get("hub.mode"), params.get("hub.verify_token"), params.get("hub.challenge"))
    if challenge is None:
        raise HTTPException(status_code=403, detail="Verification failed")
    return challenge

@router.post("/webhook", response_class=PlainTextResponse, dependencies=[Depends(webhook_limiter)])
async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
    raw = await request.body()

    if settings.facebook_app_secret:
        if not verify_signature(raw, request.headers.get("X-Hub-Signature-256")):
            log_event("webhook_signature_invalid", level="warning")
            raise HTTPException(status_code=403, detail="Invalid signature")
    else:
        log_event("webhook_signature_unchecked", level="warning")

    try:
        body = json.loads(raw or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    background_tasks.add_task(run_webhook_event, SessionLocal, body)
    return "EVENT_RECEIVED"
