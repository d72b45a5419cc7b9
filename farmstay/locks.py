# Per-farmhouse serialization of booking writes (overlap check + insert/update).
# Layers: an in-process mutex for threads of this worker, a best-effort Redis lock for other
# workers, and a row lock on the farmhouse that is authoritative on server databases.
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator
from uuid import uuid4

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from . import models
from .db import DB_TIMEOUT_SECONDS, is_sqlite
from .redis_client import get_redis, redis_key

logger = logging.getLogger("farmstay.locks")

# Deletes the key only while it still holds our token
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""

_local_locks: Dict[int, threading.Lock] = {}
_local_locks_guard = threading.Lock()


def _busy() -> HTTPException:
    # Another writer holds the farmhouse; the client should retry shortly
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={"error": "busy", "retry_after": 1},
    )


def _local_lock(farmhouse_id: int) -> threading.Lock:
    with _local_locks_guard:
        return _local_locks.setdefault(farmhouse_id, threading.Lock())


@contextmanager
def redis_try_lock(key: str, ttl_ms: int = 5000) -> Iterator[bool]:
    """
    Best-effort distributed lock (SET NX PX).

    Yields True when acquired or when Redis is unavailable (fail-open), False when
    another process holds it. The TTL bounds how long a crashed holder blocks others.
    """
    r = get_redis()
    if r is None:
        yield True
        return

    token = uuid4().hex
    try:
        acquired = bool(r.set(key, token, nx=True, px=ttl_ms))
    except Exception as exc:
        logger.warning("Redis lock %s unavailable, relying on local/row locks: %s", key, exc)
        yield True
        return

    try:
        yield acquired
    finally:
        if acquired:
            try:
                r.eval(_RELEASE_SCRIPT, 1, key, token)
            except Exception as exc:
                logger.debug("Redis lock %s release failed, expires by TTL: %s", key, exc)


@contextmanager
def farmhouse_booking_lock(db: Session, farmhouse_id: int) -> Iterator[None]:
    """
    Critical section for overlap-check-plus-write on one farmhouse.

    Commit (or roll back) inside the block so the next writer sees the result:

        with farmhouse_booking_lock(db, farmhouse.id):
            check_availability(...)
            db.add(booking)
            db.commit()
    """
    local = _local_lock(farmhouse_id)
    if not local.acquire(timeout=DB_TIMEOUT_SECONDS):
        logger.warning("Timed out waiting for booking lock on farmhouse %s", farmhouse_id)
        raise _busy()
    try:
        with redis_try_lock(redis_key("lock", "farmhouse", farmhouse_id), ttl_ms=DB_TIMEOUT_SECONDS * 1000) as locked:
            if not locked:
                raise _busy()
            if not is_sqlite():
                # Held until the caller's commit/rollback
                db.query(models.Farmhouse.id).filter(models.Farmhouse.id == farmhouse_id).with_for_update().first()
            yield
    finally:
        local.release()
