import base64
import hashlib
import hmac
import json

import pytest

from pagepilot.models import ContentQueueItem, CustomerInteraction, DataDeletionRecord, User
from pagepilot.services.data_deletion import get_deletion_status, parse_signed_request, process_deletion_request

def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")

def make_signed_request(payload: dict, secret: str = "test-app-secret") -> str:
    body = _b64(json.dumps(payload).encode())
    sig = hmac.new(secret.encode(), body.encode(), hashlib.sha256).digest()
    return f"{_b64(sig)}.{body}"

def test_parse_signed_request_round_trip():
    data = parse_signed_request(make_signed_request({"user_id": "42", "algorithm": "HMAC-SHA256"}))
    assert data["user_id"] == "42"

def test_parse_signed_request_rejects_bad_signature():
    with pytest.raises(ValueError, match="signature"):
        parse_signed_request(make_signed_request({"user_id": "42"}, secret="wrong"))

def test_parse_signed_request_rejects_garbage():
    with pytest.raises(ValueError):
        parse_signed_request("not-a-signed-request")

def test_deletion_removes_user_data(db, user, page):
    user.facebook_user_id = "fb-42"
    db.add(CustomerInteraction(page_id=page.id, customer_id="c1", message="hello", status="pending"))
    db.add(ContentQueueItem(user_id=user.id, page_id=page.id, content="draft post", status="draft"))
    db.commit()

    result = process_deletion_request(db, make_signed_request({"user_id": "fb-42"}))

    assert result["url"].endswith(f"/api/facebook/data-deletion/status/{result['confirmation_code']}")
    assert db.query(User).count() == 0
    assert db.query(CustomerInteraction).count() == 0
    assert db.query(ContentQueueItem).count() == 0
    assert db.query(DataDeletionRecord).one().facebook_user_id == "fb-42"
    assert get_deletion_status(db, result["confirmation_code"])["status"] == "completed"

def test_unknown_code_not_found(db):
    assert get_deletion_status(db, "missing") == {"status": "not_found"}

def test_deletion_routes(client, db, user):
    user.facebook_user_id = "fb-7"
    db.commit()
    res = client.post("/api/facebook/data-deletion", data={"signed_request": make_signed_request({"user_id": "fb-7"})})
    assert res.status_code == 200
    code = res.json()["confirmation_code"]

    status = client.get(f"/api/facebook/data-deletion/status/{code}")
    assert status.json()["status"] == "completed"

    bad = client.post("/api/facebook/data-deletion", data={"signed_request": "abc.def"})
    assert bad.status_code == 400
