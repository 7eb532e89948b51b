import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict

from fastapi import Request
from fastapi.responses import JSONResponse

from idea_refiner.config import get_settings
from idea_refiner.utils.logger import get_logger
from idea_refiner.utils.metrics import rate_limited

logger = get_logger("rate_limit")


@dataclass
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class SlidingWindowRateLimiter:
    """Per-client request log over a sliding window.

    A client may make ``max_requests`` calls in any ``window_seconds`` span.
    ``hit`` checks and records under one lock, so concurrent requests from the
    same client can never both take the last slot. At most once per window a
    sweep forgets every client with nothing left inside the window.
    """

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def hit(self, key: str) -> RateDecision:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now
            log = self._hits.setdefault(key, deque())
            while log and log[0] <= cutoff:
                log.popleft()
            if len(log) >= self.max_requests:
                oldest = log[0] if log else now
                retry_after = max(1, math.ceil(oldest + self.window_seconds - now))
                return RateDecision(False, self.max_requests, 0, retry_after)
            log.append(now)
            return RateDecision(True, self.max_requests, self.max_requests - len(log))

    def _sweep(self, cutoff: float) -> None:
        stale = [key for key, log in self._hits.items() if not log or log[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


_limiter: SlidingWindowRateLimiter | None = None
_limiter_lock = threading.Lock()


def get_rate_limiter() -> SlidingWindowRateLimiter:
    global _limiter
    with _limiter_lock:
        if _limiter is None:
            settings = get_settings()
            _limiter = SlidingWindowRateLimiter(
                max_requests=settings.rate_limit_max,
                window_seconds=settings.rate_limit_window_ms / 1000.0,
            )
        return _limiter


def reset_rate_limiter() -> None:
    """Drop the shared limiter so the next request rebuilds it from settings."""
    global _limiter
    with _limiter_lock:
        _limiter = None


def client_identity(request: Request) -> str:
    if get_settings().trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def too_many_requests(request: Request, decision: RateDecision) -> JSONResponse:
    rate_limited.inc()
    req_id = getattr(request.state, "request_id", None)
    logger.warning(
        "rate limit exceeded",
        extra={"extra": {"event": "rate_limited", "client": client_identity(request), "request_id": req_id}},
    )
    return JSONResponse(
        {
            "error": "Too many requests",
            "message": "Too many requests from this client, please try again later.",
            "retryAfter": decision.retry_after,
            "request_id": req_id,
        },
        status_code=429,
        headers={
            "Retry-After": str(decision.retry_after),
            "RateLimit-Limit": str(decision.limit),
            "RateLimit-Remaining": "0",
        },
    )
