"""Sliding-window rate limiting for API endpoints."""

import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from fastapi import Depends, HTTPException, Request

from app.core.auth import AuthContext, get_current_user
from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# Key count above which a check first sweeps idle keys
PURGE_THRESHOLD = 10_000


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check."""

    success: bool
    limit: int
    remaining: int
    reset: int  # unix seconds when the oldest request leaves the window

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }


class SlidingWindowRateLimiter:
    """
    Sliding window rate limiter.

    Keeps the timestamps of recent requests per key and admits a request when
    fewer than ``limit`` of them fall inside the trailing window. Storage is
    in-memory, so limits are per process.
    """

    def __init__(self, limit: int, window_seconds: float, prefix: str):
        """
        Initialize rate limiter.

        Args:
            limit: Max requests per window
            window_seconds: Window length in seconds
            prefix: Namespace for keys (e.g. "letters")
        """
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix
        self._hits: Dict[str, Deque[float]] = {}

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def _prune(self, hits: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Drop keys whose windows hold no recent requests. Returns the number dropped."""
        now = time.time() if now is None else now
        expired = []
        for storage_key, hits in self._hits.items():
            self._prune(hits, now)
            if not hits:
                expired.append(storage_key)
        for storage_key in expired:
            del self._hits[storage_key]
        return len(expired)

    def check(self, key: str) -> RateLimitResult:
        """
        Record a request for key and report whether it is allowed.

        Rejected requests are not recorded.
        """
        now = time.time()

        if not get_settings().RATE_LIMIT_ENABLED:
            return RateLimitResult(
                success=True,
                limit=self.limit,
                remaining=self.limit,
                reset=int(now + self.window_seconds),
            )

        if len(self._hits) >= PURGE_THRESHOLD:
            self.purge_expired(now)

        storage_key = self._key(key)
        hits = self._hits.get(storage_key)
        if hits is not None:
            self._prune(hits, now)
            if not hits:
                del self._hits[storage_key]
                hits = None

        if hits is not None and len(hits) >= self.limit:
            reset = math.ceil(hits[0] + self.window_seconds)
            return RateLimitResult(success=False, limit=self.limit, remaining=0, reset=reset)

        if hits is None:
            hits = self._hits[storage_key] = deque()
        hits.append(now)
        reset = math.ceil(hits[0] + self.window_seconds)
        return RateLimitResult(
            success=True,
            limit=self.limit,
            remaining=self.limit - len(hits),
            reset=reset,
        )

    def enforce(self, key: str) -> RateLimitResult:
        """
        Check and raise if the key is over its limit.

        Raises:
            HTTPException: 429 with Retry-After and X-RateLimit-* headers
        """
        result = self.check(key)
        if result.success:
            return result

        retry_after = max(1, result.reset - int(time.time()))
        logger.warning(
            f"Rate limit exceeded for {self._key(key)}, retry after: {retry_after}s",
            extra={"limiter": self.prefix, "limit": self.limit},
        )
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after), **result.headers},
        )

    def reset(self, key: str) -> None:
        """Forget all recorded requests for key."""
        self._hits.pop(self._key(key), None)
        logger.info(f"Rate limit reset for key: {self._key(key)}")


# Global limiter instances
general_limiter = SlidingWindowRateLimiter(limit=60, window_seconds=60, prefix="general")
letters_limiter = SlidingWindowRateLimiter(limit=10, window_seconds=3600, prefix="letters")
analysis_limiter = SlidingWindowRateLimiter(limit=20, window_seconds=3600, prefix="analysis")
uploads_limiter = SlidingWindowRateLimiter(limit=30, window_seconds=3600, prefix="uploads")
ip_limiter = SlidingWindowRateLimiter(limit=100, window_seconds=60, prefix="ip")

LIMITERS: Dict[str, SlidingWindowRateLimiter] = {
    "general": general_limiter,
    "letters": letters_limiter,
    "analysis": analysis_limiter,
    "uploads": uploads_limiter,
    "ip": ip_limiter,
}

_OPERATION_LIMITERS = {
    "letters.generate": letters_limiter,
    "analysis.analyze": analysis_limiter,
    "documents.upload": uploads_limiter,
    "knowledge.upload": uploads_limiter,
}

# Requests per hour for API keys by subscription tier (None = unlimited)
API_KEY_TIER_LIMITS: Dict[str, Optional[int]] = {
    "free": 100,
    "starter": 500,
    "professional": 2000,
    "enterprise": 10000,
    "unlimited": None,
}

_api_key_limiters: Dict[str, SlidingWindowRateLimiter] = {}


def get_limiter_for_operation(operation: str) -> SlidingWindowRateLimiter:
    """Map an operation name (e.g. "letters.generate") to its limiter."""
    return _OPERATION_LIMITERS.get(operation, general_limiter)


def get_rate_limit_identifier(user_id: Optional[str], request: Optional[Request] = None) -> str:
    """
    Build the rate limit key for a caller.

    Authenticated callers are keyed by user id, anonymous ones by client IP
    (X-Forwarded-For first hop, then X-Real-IP, then the socket peer).
    """
    if user_id:
        return f"user:{user_id}"

    ip = "unknown"
    if request is not None:
        forwarded = request.headers.get("x-forwarded-for")
        real_ip = request.headers.get("x-real-ip")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
        elif real_ip:
            ip = real_ip.strip()
        elif request.client:
            ip = request.client.host
    return f"ip:{ip}"


def rate_limit(operation: str) -> Callable:
    """
    FastAPI dependency factory enforcing the limiter for an operation.

    Usage:
        @router.post("/generate", dependencies=[Depends(rate_limit("letters.generate"))])
    """
    limiter = get_limiter_for_operation(operation)

    async def _dependency(
        request: Request,
        auth: Optional[AuthContext] = Depends(get_current_user),
    ) -> RateLimitResult:
        identifier = get_rate_limit_identifier(str(auth.user_id) if auth else None, request)
        try:
            return limiter.enforce(identifier)
        except HTTPException:
            from app.db.audit_log import rate_limited

            rate_limited(identifier, operation, request.client.host if request.client else None)
            raise

    return _dependency


def check_api_key_rate_limit(api_key_id: str, tier: str) -> RateLimitResult:
    """
    Enforce the hourly request allowance of an API key's tier.

    Raises:
        HTTPException: 429 if the key is over its allowance
        ValueError: If the tier is unknown
    """
    if tier not in API_KEY_TIER_LIMITS:
        raise ValueError(f"Unknown API key tier: {tier}")

    allowance = API_KEY_TIER_LIMITS[tier]
    if allowance is None:
        return RateLimitResult(success=True, limit=0, remaining=0, reset=0)

    limiter = _api_key_limiters.get(tier)
    if limiter is None:
        limiter = SlidingWindowRateLimiter(
            limit=allowance, window_seconds=3600, prefix=f"api_key:{tier}"
        )
        _api_key_limiters[tier] = limiter
    return limiter.enforce(api_key_id)


def reset_user_rate_limits(user_id: str) -> None:
    """Reset a user's counters in every named limiter."""
    key = get_rate_limit_identifier(user_id)
    for limiter in LIMITERS.values():
        limiter.reset(key)
