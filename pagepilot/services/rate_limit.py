import threading
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import Request

from pagepilot.logging_setup import log_event

VIOLATION_TTL_SECONDS = 7 * 24 * 3600

_violations: list[dict[str, Any]] = []
_violations_lock = threading.Lock()

class RateLimitExceeded(Exception):
    def __init__(self, limiter: str, message: str, retry_after: int, endpoint: str):
        super().__init__(message)
        self.limiter = limiter
        self.message = message
        self.retry_after = retry_after
        self.endpoint = endpoint

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "Too many requests",
            "message": self.message,
            "retryAfter": self.retry_after,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoint": self.endpoint,
        }

def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"

def webhook_key(request: Request) -> str:
    signature = request.headers.get("X-Hub-Signature-256", "")
    return f"{client_ip(request)}:{signature[7:23]}"

class RateLimiter:
    """In-memory sliding window, keyed per client. Usable as a FastAPI dependency."""

    def __init__(self, name: str, max_requests: int, window_seconds: int, message: str,
                 key_func: Callable[[Request], str] = client_ip):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message
        self.key_func = key_func
        self._hits: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, now: float | None = None) -> int:
        """Records a request; returns seconds to wait if over the limit, else 0."""
        now = now or time.time()
        with self._lock:
            hits = [t for t in self._hits.get(key, []) if now - t < self.window_seconds]
            if len(hits) >= self.max_requests:
                self._hits[key] = hits
                return max(1, int(self.window_seconds - (now - hits[0])))
            hits.append(now)
            self._hits[key] = hits
            return 0

    def reset(self):
        with self._lock:
            self._hits.clear()

    def __call__(self, request: Request):
        key = self.key_func(request)
        retry_after = self.hit(key)
        if retry_after:
            record_violation(client_ip(request), self.name, request.url.path)
            raise RateLimitExceeded(self.name, self.message, retry_after, request.url.path)

general_limiter = RateLimiter("general", 100, 15 * 60, "Too many requests from this IP, please try again later.")
auth_limiter = RateLimiter("auth", 10, 15 * 60, "Too many authentication attempts, please try again later.")
ai_limiter = RateLimiter("ai", 20, 5 * 60, "Too many AI processing requests, please slow down.")
facebook_limiter = RateLimiter("facebook", 30, 10 * 60, "Too many Facebook API requests, please try again later.")
webhook_limiter = RateLimiter("webhook", 50, 60, "Webhook rate limit exceeded.", key_func=webhook_key)
admin_limiter = RateLimiter("admin", 10, 3600, "Too many admin operations, please try again later.")

LIMITERS = [general_limiter, auth_limiter, ai_limiter, facebook_limiter, webhook_limiter, admin_limiter]

def record_violation(ip: str, limiter: str, endpoint: str):
    with _violations_lock:
        _violations.append({"ip": ip, "limiter": limiter, "endpoint": endpoint, "timestamp": time.time()})
    log_event("rate_limit_exceeded", level="warning", ip=ip, limiter=limiter, endpoint=endpoint)

def get_rate_limit_stats() -> dict[str, Any]:
    now = time.time()
    with _violations_lock:
        violations = list(_violations)

    recent = [v for v in violations if now - v["timestamp"] < 24 * 3600]
    by_ip = Counter(v["ip"] for v in violations)
    return {
        "total_violations": len(violations),
        "recent_violations": len(recent),
        "unique_ips": len(by_ip),
        "top_violators": [{"ip": ip, "count": count} for ip, count in by_ip.most_common(10)],
        "by_limiter": dict(Counter(v["limiter"] for v in violations)),
    }

def cleanup_violations(max_age_seconds: int = VIOLATION_TTL_SECONDS) -> int:
    cutoff = time.time() - max_age_seconds
    with _violations_lock:
        before = len(_violations)
        _violations[:] = [v for v in _violations if v["timestamp"] >= cutoff]
        removed = before - len(_violations)
    log_event("rate_limit_cleanup", removed=removed)
    return removed

def reset_all():
    for limiter in LIMITERS:
        limiter.reset()
    with _violations_lock:
        _violations.clear()
