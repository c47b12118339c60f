"""
utils/locks.py - Per-driver settlement locks backed by Redis

Settlement and reversal for one driver must never interleave. The database
row lock taken by the ledger covers a single database; when several API
workers share it, this Redis lock serialises them before the transaction
even starts.

Redis is optional: with no REDIS_URL, or while Redis is unreachable, the
lock degrades to a no-op and the row lock is the only guard.

Usage:
    from utils.locks import settlement_lock

    with settlement_lock(driver_id):
        ...
"""

import logging
import time
from contextlib import contextmanager
from typing import Optional

import redis
from config import settings
from utils.exceptions import ConflictRetryExhausted

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Redis connection (singleton with retry cooldown)
# ---------------------------------------------------------------------------

_redis_client: Optional[redis.Redis] = None
_redis_last_fail: float = 0.0       # epoch of last connection failure
_REDIS_RETRY_INTERVAL = 60.0        # seconds before retrying after a failure
_redis_warned: bool = False          # only warn once per cooldown period


def _get_redis() -> Optional[redis.Redis]:
    """Return a Redis client, or None if Redis is disabled / unreachable."""
    global _redis_client, _redis_last_fail, _redis_warned

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is not None:
        return _redis_client

    # Don't retry too fast after a failure
    now = time.time()
    if now - _redis_last_fail < _REDIS_RETRY_INTERVAL:
        return None

    try:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=2,
            retry_on_timeout=True,
        )
        _redis_client.ping()
        logger.info("✅ Redis connected, settlement locks are shared across workers")
        _redis_warned = False
        return _redis_client
    except redis.exceptions.RedisError as e:
        _redis_last_fail = now
        _redis_client = None
        if not _redis_warned:
            logger.warning(f"⚠️ Redis unavailable – settlement relies on row locks only: {e}")
            _redis_warned = True
        return None


def lock_name(driver_id: int) -> str:
    return f"settlement:driver:{driver_id}"


@contextmanager
def settlement_lock(driver_id: int):
    """Hold the settlement lock of one driver for the duration of the block."""
    client = _get_redis()
    if client is None:
        yield
        return

    lock = client.lock(
        lock_name(driver_id),
        timeout=settings.SETTLEMENT_LOCK_TIMEOUT,
        blocking_timeout=settings.SETTLEMENT_LOCK_WAIT,
    )
    try:
        acquired = lock.acquire()
    except redis.exceptions.RedisError as e:
        logger.warning(f"Settlement lock for driver {driver_id} unavailable, using row lock only: {e}")
        acquired = None

    if acquired is None:
        yield
        return

    if not acquired:
        raise ConflictRetryExhausted(
            "Another settlement for this driver is still running",
            driver_id=driver_id,
        )

    try:
        yield
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError:
            # Lock expired while we worked; the transaction already committed or rolled back
            logger.warning(f"Settlement lock for driver {driver_id} expired before release")
