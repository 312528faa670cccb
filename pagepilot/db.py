import time
import logging
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pagepilot.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url

def normalize_db_url(db_url: str) -> str:
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)
    if db_url.startswith("postgresql://") and "+psycopg" not in db_url:
        db_url = db_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return db_url

def _create_engine_with_retries(db_url: str, attempts: int = 3, first_delay: float = 2.0):
    db_url = normalize_db_url(db_url)

    kwargs = {"pool_pre_ping": True}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases must share a single connection across threads
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, **kwargs)
    safe_target = db_url.split("@")[-1]

    delay = first_delay
    for attempt in range(1, attempts + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return engine
        except OperationalError as e:
            if attempt == attempts:
                logger.error("Database %s unreachable after %d attempts", safe_target, attempts)
                raise
            logger.warning("Database %s not ready (attempt %d/%d), retrying in %.0fs: %s",
                           safe_target, attempt, attempts, delay, e)
            time.sleep(delay)
            delay *= 2

engine = _create_engine_with_retries(DATABASE_URL)

# WAL mode avoids "database is locked" between the API and scheduler threads
if engine.url.get_backend_name() == "sqlite" and engine.url.database not in (None, "", ":memory:"):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
