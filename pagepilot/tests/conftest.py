import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["FACEBOOK_APP_SECRET"] = "test-app-secret"
os.environ["FB_VERIFY_TOKEN"] = "verify-me"
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["FACEBOOK_PIXEL_ID"] = ""
os.environ["AUTO_POST_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from pagepilot.db import SessionLocal, engine
from pagepilot.models import Base, FacebookPage, User
from pagepilot.security.auth import create_access_token, get_password_hash
from pagepilot.services import rate_limit

@pytest.fixture(autouse=True)
def fresh_state():
    Base.metadata.create_all(bind=engine)
    rate_limit.reset_all()
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def client():
    from pagepilot.main import app
    return TestClient(app)

@pytest.fixture
def user(db):
    u = User(
        email="owner@example.com",
        password_hash=get_password_hash("correct-horse"),
        first_name="Sam",
        is_active=True,
        facebook_page_id="1234567890123",
        campaign_goal="more bookings",
        subscription_plan="free",
    )
    db.add(u)
    db.commit()
    return u

@pytest.fixture
def page(db, user):
    p = FacebookPage(user_id=user.id, page_id="1234567890123", page_name="Corner Cafe", access_token="page-token")
    db.add(p)
    db.commit()
    return p

@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}
