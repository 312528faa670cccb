import hashlib
from datetime import datetime, timedelta, timezone as dt_timezone
import jwt
import bcrypt
from fastapi import Request, HTTPException, Depends, status
from sqlalchemy.orm import Session
from pagepilot.db import get_db
from pagepilot.models import User, ApiKey
from pagepilot.config import settings

ALGORITHM = "HS256"
ACCESS_TOKEN_DAYS = 7

def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8")[:72], hashed_password.encode("utf-8"))
    except ValueError:
        return False

def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8")[:72], bcrypt.gensalt()).decode("utf-8")

def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()

def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(dt_timezone.utc) + (expires_delta or timedelta(days=ACCESS_TOKEN_DAYS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)

def decode_access_token(token: str) -> int | None:
    """Returns the user id carried by a valid token, else None."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        return None
    sub = payload.get("sub")
    if sub is None:
        return None
    try:
        return int(sub)
    except (TypeError, ValueError):
        return None

def _user_from_api_key(db: Session, x_api_key: str) -> User | None:
    # Admin key acts as the platform superadmin
    if settings.admin_api_key and x_api_key == settings.admin_api_key:
        return db.query(User).filter(User.is_superadmin == True, User.is_active == True).first()

    api_key_record = db.query(ApiKey).filter(
        ApiKey.key_hash == hash_api_key(x_api_key),
        ApiKey.revoked_at == None
    ).first()
    if not api_key_record:
        return None

    user = db.get(User, api_key_record.user_id)
    if not user or not user.is_active:
        return None
    api_key_record.last_used_at = datetime.now(dt_timezone.utc)
    db.commit()
    return user

def _session_token(request: Request) -> str | None:
    """JWT from the HttpOnly cookie, falling back to a Bearer header."""
    token = request.cookies.get("access_token")
    if token:
        return token
    scheme, _, credentials = (request.headers.get("Authorization") or "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None

def get_current_user(
    request: Request,
    db: Session = Depends(get_db)
) -> User | None:
    token = _session_token(request)
    if not token:
        # automation clients authenticate with X-API-Key
        x_api_key = request.headers.get("X-API-Key")
        return _user_from_api_key(db, x_api_key) if x_api_key else None

    user_id = decode_access_token(token)
    user = db.get(User, user_id) if user_id is not None else None
    if not user or not user.is_active:
        return None
    return user

def require_user(user: User | None = Depends(get_current_user)) -> User:
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

def require_superadmin(user: User = Depends(require_user)) -> User:
    if not user.is_superadmin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Superadmin access required")
    return user
