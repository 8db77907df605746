from __future__ import annotations

import math
import threading
import time
from collections import deque
from typing import Deque, Dict

from flask import current_app, request, session

from crm_portal.errors import RateLimitedError


_READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_WINDOW_SECONDS = 60.0
_MAX_TRACKED_CLIENTS = 10_000


class SlidingWindowLimiter:
    """Counts writes per client over the last minute."""

    def __init__(self, window_seconds: float = _WINDOW_SECONDS) -> None:
        self.window_seconds = window_seconds
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}

    def hit(self, client_key: str, limit: int, now: float | None = None) -> int:
        """Record one write; return 0 when allowed, else seconds until a slot frees."""
        now = time.monotonic() if now is None else now
        horizon = now - self.window_seconds
        with self._lock:
            hits = self._hits.setdefault(client_key, deque())
            while hits and hits[0] <= horizon:
                hits.popleft()
            if len(hits) >= limit:
                return max(1, math.ceil(hits[0] - horizon))
            hits.append(now)
            if len(self._hits) > _MAX_TRACKED_CLIENTS:
                self._forget_idle(horizon)
            return 0

    def _forget_idle(self, horizon: float) -> None:
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= horizon]
        for key in idle:
            del self._hits[key]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


_LIMITER = SlidingWindowLimiter()


def _client_key() -> str:
    who = (session.get("user_email") or "").strip().lower() or "anon"
    return f"{request.remote_addr or 'unknown'}|{who}"


def enforce_rate_limit() -> None:
    """Limit API writes per client; reads and non-API paths are not counted."""
    config = current_app.config
    if not config.get("RATE_LIMIT_ENABLED", True):
        return None
    if request.method in _READ_METHODS or not request.path.startswith("/api/"):
        return None

    limit = max(1, int(config.get("RATE_LIMIT_PER_MINUTE") or 240))
    retry_after = _LIMITER.hit(_client_key(), limit)
    if retry_after:
        raise RateLimitedError(retry_after)
    return None


_RESPONSE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "same-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


def apply_security_headers(response):
    if not current_app.config.get("SECURITY_HEADERS_ENABLED", True):
        return response
    for name, value in _RESPONSE_HEADERS.items():
        response.headers.setdefault(name, value)
    if request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000")
    return response


def reset_rate_limiter_for_tests() -> None:
    _LIMITER.reset()
