# storefront/ratelimit.py
"""
Per-caller request limits, counted in Redis with fixed windows.

Two tiers: "strict" for anything that moves money or stock, "moderate"
for reads. Callers are keyed by user id when signed in, by client IP
otherwise. Without Redis, or with Redis failing, requests are let through.
"""

import logging
import time
from typing import Optional

import redis
from fastapi import Depends, Request

from storefront.config import RATE_LIMITS
from storefront.dependencies import Caller, get_current_user, get_kv
from storefront.errors import ApiError, ErrorCode

logger = logging.getLogger(__name__)


def get_ip_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "unknown"


def get_rate_limit_identifier(user_id: Optional[str] = None, ip_address: Optional[str] = None) -> str:
    if user_id:
        return f"user:{user_id}"
    if ip_address:
        return f"ip:{ip_address}"
    return "anonymous"


def check_rate_limit(kv: Optional[redis.Redis], identifier: str, tier: str, now: Optional[float] = None) -> None:
    """Count one hit for identifier and raise RATE_LIMIT_EXCEEDED once the window is full."""
    if kv is None:
        return

    limit, window = RATE_LIMITS[tier]
    now = time.time() if now is None else now
    bucket = int(now // window)
    key = f"ratelimit:{tier}:{identifier}:{bucket}"
    try:
        hits = kv.incr(key)
        if hits == 1:
            kv.expire(key, window)
    except redis.RedisError as e:
        logger.warning("Rate limit check skipped for %s: %s", identifier, e)
        return

    if hits > limit:
        retry_after = max(1, (bucket + 1) * window - int(now))
        logger.info("Rate limit hit for %s on %s tier", identifier, tier)
        raise ApiError(
            ErrorCode.RATE_LIMIT_EXCEEDED,
            details={"limit": limit, "window": window, "retryAfter": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


def rate_limit(tier: str):
    """Route dependency: `dependencies=[Depends(rate_limit("strict"))]`."""
    if tier not in RATE_LIMITS:
        raise ValueError(f"Unknown rate limit tier: {tier}")

    def dependency(
        request: Request,
        caller: Caller = Depends(get_current_user),
        kv: Optional[redis.Redis] = Depends(get_kv),
    ) -> None:
        identifier = get_rate_limit_identifier(caller.user_id, get_ip_address(request))
        check_rate_limit(kv, identifier, tier)

    return dependency
