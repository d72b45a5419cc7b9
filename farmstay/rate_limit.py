# Redis-backed fixed-window rate limiter for booking writes and public invoice lookups.
# Counters are per client IP and scope; without Redis every request is let through.
import logging
import os
from typing import Callable, Literal, Optional

from fastapi import HTTPException, Request, status

from .redis_client import get_redis, redis_key

logger = logging.getLogger("farmstay.rate_limit")

# "write": booking and farmhouse mutations; "public": unauthenticated invoice-token lookups
Scope = Literal["write", "public"]

DEFAULT_LIMITS = {"write": 30, "public": 60}


def _env_int(name: str, default: int) -> int:
    raw: Optional[str] = os.getenv(name)
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _window_seconds() -> int:
    return _env_int("RATE_LIMIT_WINDOW_SECONDS", 60)


def _limit_for_scope(scope: Scope) -> int:
    # RATE_LIMIT_WRITE_PER_WINDOW / RATE_LIMIT_PUBLIC_PER_WINDOW
    return _env_int(f"RATE_LIMIT_{scope.upper()}_PER_WINDOW", DEFAULT_LIMITS[scope])


def _client_ip(request: Request) -> str:
    # Connection address only; X-Forwarded-For is not trusted here
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(scope: Scope) -> Callable[[Request], None]:
    """
    Dependency factory enforcing `limit` hits per `window` seconds for one scope.

    The first hit of a window sets the key's TTL; the 429 body carries retry_after
    taken from the remaining TTL.
    """
    window = _window_seconds()
    limit = _limit_for_scope(scope)

    def _dependency(request: Request) -> None:
        r = get_redis()
        if r is None:
            return

        ip = _client_ip(request)
        key = redis_key("rl", scope, ip)
        try:
            hits = r.incr(key)
            if hits == 1:
                r.expire(key, window)
            if hits <= limit:
                return
            ttl = r.ttl(key)
        except Exception as exc:
            logger.warning("Rate limit fail-open (scope=%s, ip=%s): %s", scope, ip, exc)
            return

        logger.info("Rate limited %s on %s (%d hits)", ip, scope, hits)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limited",
                "scope": scope,
                "limit": limit,
                "window_seconds": window,
                "retry_after": ttl if isinstance(ttl, int) and ttl > 0 else window,
            },
        )

    return _dependency
