# Shared Redis connection for the booking lock and the rate limiter.
# Opt-in through REDIS_ENABLED; every caller treats a None client as "no Redis" and carries on.
import logging
import os
from typing import Optional

_logger = logging.getLogger("farmstay.redis")

KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "farmstay")


def truthy(val: Optional[str]) -> bool:
    """Env flag parser: 1/true/t/yes/y/on, case-insensitive."""
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def is_redis_enabled() -> bool:
    return truthy(os.getenv("REDIS_ENABLED", "false"))


def redis_key(*parts) -> str:
    """Namespaced key, e.g. redis_key("lock", "farmhouse", 3) -> "farmstay:lock:farmhouse:3"."""
    return ":".join([KEY_PREFIX, *(str(p) for p in parts)])


_client = None
# Set after the first connection attempt; a failed attempt is not retried in this process.
_attempted = False


def get_redis():
    """
    Connected client, or None when Redis is disabled or unreachable.

    Socket timeouts are kept short so a missing Redis never stalls a booking request.
    """
    global _client, _attempted
    if not is_redis_enabled():
        return None
    if _client is not None or _attempted:
        return _client

    _attempted = True
    url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    try:
        import redis

        client = redis.Redis.from_url(
            url,
            socket_timeout=0.25,
            socket_connect_timeout=0.25,
            retry_on_timeout=False,
            health_check_interval=0,
        )
        client.ping()
    except Exception as exc:
        _logger.warning("Redis unavailable at %s, continuing without it: %s", url, exc)
        return None

    _client = client
    _logger.info("Connected to Redis at %s", url)
    return _client
