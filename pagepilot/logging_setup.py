# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

import contextvars
import json
import logging
import queue
import sys
import threading
from datetime import datetime, timezone
from typing import Any

import requests
from pythonjsonlogger import jsonlogger

from pagepilot.config import settings

SERVICE_NAME = "pagepilot"
REDACTED = "***REDACTED***"

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)

# Any field whose name contains one of these is masked before it leaves the process
SENSITIVE_FIELD_PARTS = ("token", "secret", "password", "key", "authorization", "cookie", "signature")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

def _is_sensitive(field: str) -> bool:
    name = field.lower()
    return any(part in name for part in SENSITIVE_FIELD_PARTS)

def _deployment() -> str:
    return "production" if settings.axiom_token else "local"

class PagePilotJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with service metadata, the current request id and masked secrets."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault("timestamp", datetime.fromtimestamp(record.created, timezone.utc).isoformat())
        log_record["level"] = (log_record.get("level") or record.levelname).upper()
        log_record["service_name"] = SERVICE_NAME
        log_record["environment"] = _deployment()

        request_id = request_id_var.get()
        if request_id:
            log_record["request_id"] = request_id

        for field, value in list(log_record.items()):
            if isinstance(value, str) and _is_sensitive(field):
                log_record[field] = REDACTED

class AxiomHandler(logging.Handler):
    """
    Buffers formatted records and posts them to the Axiom ingest API from a
    daemon thread. Records are dropped, never blocked on, when the buffer is full.
    """

    def __init__(self, batch_size: int = 50, flush_interval: float = 3.0):
        super().__init__()
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.buffer: queue.Queue[dict[str, Any]] = queue.Queue(maxsize=10000)
        self.dropped = 0
        self.ingest_url = f"{settings.axiom_url.rstrip('/')}/v1/datasets/{settings.axiom_dataset}/ingest"
        threading.Thread(target=self._drain, name="axiom-shipper", daemon=True).start()

    def _headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {settings.axiom_token}", "Content-Type": "application/json"}
        if settings.axiom_org_id:
            headers["X-Axiom-Org-Id"] = settings.axiom_org_id
        return headers

    def _drain(self):
        pending: list[dict[str, Any]] = []
        while True:
            try:
                pending.append(self.buffer.get(timeout=self.flush_interval))
                if len(pending) < self.batch_size and not self.buffer.empty():
                    continue
            except queue.Empty:
                pass
            if pending:
                self.ship(pending)
                pending = []

    def ship(self, batch: list[dict[str, Any]]):
        try:
            requests.post(self.ingest_url, headers=self._headers(), json=batch, timeout=5.0)
        except requests.RequestException as e:
            # the logging pipeline cannot report its own failure through itself
            print(f"axiom ship failed ({len(batch)} records): {e}", file=sys.stderr)

    def emit(self, record):
        try:
            self.buffer.put_nowait(json.loads(self.format(record)))
        except queue.Full:
            self.dropped += 1
        except (TypeError, ValueError):
            self.handleError(record)

def setup_logging(level: int = logging.INFO):
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = PagePilotJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(formatter)
    root.addHandler(stdout)

    if settings.axiom_token and settings.axiom_dataset:
        shipper = AxiomHandler()
        shipper.setFormatter(formatter)
        root.addHandler(shipper)

    for noisy in ("uvicorn.access", "apscheduler", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

def log_event(event: str, level: str = "info", **fields):
    """Emit one structured event; fields set to None are left out."""
    extra = {k: v for k, v in fields.items() if v is not None}
    extra["event"] = event
    logging.getLogger(SERVICE_NAME).log(_LEVELS.get(level.lower(), logging.INFO), event, extra=extra)
