"""
Rate Limiting

Throttles reservation attempts. Requests are counted per authenticated actor,
falling back to the client IP when no valid bearer token was sent.

Default limit: BOOKING_RATE_LIMIT requests per BOOKING_RATE_WINDOW_SECONDS
(10 per 15 minutes).

Usage:
    from .rate_limiter import rate_limit_dependency

    @router.post("/bookings", dependencies=[Depends(rate_limit_dependency())])
    async def create_booking(...):
        ...
"""

import logging
import time
from collections import defaultdict
from typing import Dict, Optional, Tuple

from fastapi import HTTPException, Request, status

from .core.config import get_settings
from .core.request_context import AuthenticationError, resolve_request_context

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────
# In-Memory Rate Limiter (Sliding Window)
# ────────────────────────────────────────────────────────────────

class RateLimiter:
    """
    In-memory sliding-window rate limiter.

    Counts are per worker process; with several workers the effective limit
    is multiplied by the worker count.
    """

    def __init__(self, cleanup_interval: int = 300):
        # Structure: {client_key: [(timestamp, endpoint), ...]}
        self.requests: Dict[str, list] = defaultdict(list)
        self.cleanup_interval = cleanup_interval
        self.last_cleanup = time.time()

    @staticmethod
    def client_ip(request: Request) -> str:
        """Client IP, honouring the first X-Forwarded-For hop."""
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    def client_key(self, request: Request) -> str:
        try:
            ctx = resolve_request_context(request, require_auth=False)
        except AuthenticationError:
            ctx = None
        if ctx is not None and ctx.is_authenticated:
            return f"user:{ctx.user_id}"
        return f"ip:{self.client_ip(request)}"

    def _cleanup_old_requests(self, max_age: int):
        current_time = time.time()
        if current_time - self.last_cleanup < self.cleanup_interval:
            return

        cutoff = current_time - max_age
        for key in list(self.requests.keys()):
            self.requests[key] = [(ts, ep) for ts, ep in self.requests[key] if ts > cutoff]
            if not self.requests[key]:
                del self.requests[key]

        self.last_cleanup = current_time
        logger.debug(f"Rate limiter cleanup: {len(self.requests)} clients tracked")

    def check_rate_limit(
        self,
        client_key: str,
        endpoint: str,
        max_requests: int,
        window_seconds: int,
        now: Optional[float] = None,
    ) -> Tuple[bool, dict]:
        """
        Check (and record, when allowed) one request.

        Returns:
            (is_allowed, metadata) tuple
            metadata contains: remaining, reset_time, total_requests, limit, window_seconds
        """
        self._cleanup_old_requests(window_seconds)

        current_time = time.time() if now is None else now
        window_start = current_time - window_seconds

        recent_requests = [
            ts for ts, ep in self.requests[client_key]
            if ts > window_start and ep == endpoint
        ]

        request_count = len(recent_requests)
        is_allowed = request_count < max_requests

        if recent_requests:
            reset_time = min(recent_requests) + window_seconds
        else:
            reset_time = current_time + window_seconds

        if is_allowed:
            self.requests[client_key].append((current_time, endpoint))
            request_count += 1

        metadata = {
            "remaining": max(0, max_requests - request_count),
            "reset_time": int(reset_time),
            "total_requests": request_count,
            "limit": max_requests,
            "window_seconds": window_seconds,
        }
        return is_allowed, metadata


# Global rate limiter instance
_rate_limiter = RateLimiter()


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

def rate_limit_dependency(max_requests: Optional[int] = None, window_seconds: Optional[int] = None):
    """
    Create a rate limit dependency for FastAPI routes.

    Limits left as None are read from settings on every request.
    """
    async def dependency(request: Request):
        settings = get_settings()
        limit = max_requests or settings.booking_rate_limit
        window = window_seconds or settings.booking_rate_window_seconds
        endpoint = f"{request.method} {request.url.path}"
        client_key = _rate_limiter.client_key(request)

        is_allowed, metadata = _rate_limiter.check_rate_limit(
            client_key=client_key,
            endpoint=endpoint,
            max_requests=limit,
            window_seconds=window,
        )

        if not is_allowed:
            retry_after = max(1, metadata["reset_time"] - int(time.time()))
            logger.warning(
                f"[RATE_LIMIT] Blocked {client_key} on {endpoint}: "
                f"{metadata['total_requests']}/{metadata['limit']} in {metadata['window_seconds']}s window"
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Too many booking attempts. Limit: {limit} per {window}s",
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(metadata["reset_time"]),
                },
            )

        return None

    return dependency


def clear_rate_limits(client_key: Optional[str] = None):
    """
    Clear rate limits for one client key (``user:<id>`` / ``ip:<addr>``) or all clients.
    """
    if client_key:
        if client_key in _rate_limiter.requests:
            del _rate_limiter.requests[client_key]
            logger.info(f"Cleared rate limits for {client_key}")
    else:
        _rate_limiter.requests.clear()
        logger.info("Cleared all rate limits")
