"""
One-shot auto-post check for external cron runners.
Exits 0 when a post was published, 1 otherwise.
"""
import json
import os
import sys

from dotenv import load_dotenv

def main() -> int:
    base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
    load_dotenv(os.path.join(base_dir, '.env'))

    # Settings are read at import time, so .env must be loaded first
    from pagepilot.db import SessionLocal, engine
    from pagepilot.logging_setup import setup_logging
    from pagepilot.models import Base
    from pagepilot.services.auto_post import run_auto_post_job

    setup_logging()
    Base.metadata.create_all(bind=engine)
    result = run_auto_post_job(SessionLocal)
    print(json.dumps(result, indent=2, default=str))
    return 0 if result["executed"] else 1

if __name__ == "__main__":
    sys.exit(main())
