import logging
import time
import uuid
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from pagepilot.config import settings
from pagepilot.db import engine, SessionLocal
from pagepilot.logging_setup import log_event, request_id_var, setup_logging
from pagepilot.models import Base, User
from pagepilot.routes import ads, ai, auth, content, customer_service, dashboard, facebook, restrictions, system, webhooks, ws
from pagepilot.security.auth import get_password_hash
from pagepilot.services.rate_limit import RateLimitExceeded, general_limiter
from pagepilot.services.scheduler import shutdown_scheduler, start_scheduler

logger = logging.getLogger(__name__)

def startup_warnings() -> list[str]:
    problems = []
    if not settings.openai_api_key:
        problems.append("OPENAI_API_KEY")
    if not settings.facebook_app_id or not settings.facebook_app_secret:
        problems.append("FACEBOOK_APP_ID/FACEBOOK_APP_SECRET")
    if not settings.fb_verify_token:
        problems.append("FB_VERIFY_TOKEN")
    if not settings.database_url or settings.database_url.startswith("sqlite"):
        problems.append("DATABASE_URL (Production Postgres required)")
    if settings.secret_key == "change-me-in-production-for-jwt":
        problems.append("SECRET_KEY (Using default insecure key)")
    return problems

app = FastAPI(title="PagePilot")
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def request_context(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    token = request_id_var.set(req_id)
    started = time.perf_counter()
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = req_id
        log_event(
            "api_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response
    finally:
        request_id_var.reset(token)

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    log_event("rate_limit_exceeded", level="warning", limiter=exc.limiter, path=exc.endpoint)
    return JSONResponse(status_code=429, content=exc.to_dict(), headers={"Retry-After": str(exc.retry_after)})

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error", "type": type(exc).__name__},
    )

@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": "1.0.0",
        "now": datetime.now(timezone.utc).isoformat(),
    }

@app.get("/ready")
def readiness_check():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT id FROM users LIMIT 1"))
        return {"status": "ready"}
    except SQLAlchemyError:
        return JSONResponse(status_code=503, content={"status": "not_ready", "detail": "Database unreachable or tables missing."})

# Include Routers
app.include_router(auth.router)
app.include_router(webhooks.router)
app.include_router(ws.router)
for module in (facebook, dashboard, customer_service, ads, restrictions, ai, content, system):
    app.include_router(module.router, dependencies=[Depends(general_limiter)])

def bootstrap_superadmin():
    """Seed the platform superadmin from settings when none exists."""
    if not settings.superadmin_email or not settings.superadmin_password:
        return
    db = SessionLocal()
    try:
        if db.query(User).filter(User.is_superadmin == True).first():
            return
        existing = db.query(User).filter(User.email == settings.superadmin_email).first()
        if existing:
            existing.is_superadmin = True
        else:
            db.add(User(
                email=settings.superadmin_email,
                password_hash=get_password_hash(settings.superadmin_password),
                first_name="Platform",
                last_name="Superadmin",
                is_superadmin=True,
                is_active=True,
                onboarding_complete=True,
            ))
        db.commit()
        log_event("superadmin_bootstrapped", email=settings.superadmin_email)
    except SQLAlchemyError as e:
        db.rollback()
        log_event("superadmin_bootstrap_failed", level="error", error=str(e))
    finally:
        db.close()

@app.on_event("startup")
def on_startup():
    setup_logging()
    missing = startup_warnings()
    if missing:
        log_event("startup_config_warning", level="warning", missing=missing)

    Base.metadata.create_all(bind=engine)
    bootstrap_superadmin()

    app.state.scheduler = None
    if settings.scheduler_enabled:
        try:
            app.state.scheduler = start_scheduler(SessionLocal)
        except Exception as e:
            log_event("scheduler_start_failed", level="error", error=repr(e))

@app.on_event("shutdown")
def on_shutdown():
    shutdown_scheduler()
