# SPDX-License-Identifier: Apache-2.0

"""
Per-referral write locks on Redis.

The lock serializes writers to one referral up front so concurrent
requests rarely reach the version check. The version check in the
repository remains the source of truth: when Redis is not configured or
unreachable, writes proceed without the lock.
"""

import os
import logging
from contextlib import contextmanager
from typing import Iterator, Optional
import redis
from redis.exceptions import RedisError, LockError
from opentelemetry import trace

from ..domain.errors import ConcurrentModificationError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class ReferralLockService:
    """
    Redis-backed lock per referral ID using redis-py's ``Lock``.

    Args:
        redis_url: Redis connection URL, None to run without locking
        timeout: Seconds before a held lock expires on its own
        blocking_timeout: Seconds to wait for a busy lock
        client: Pre-built redis client, used instead of ``redis_url``
    """

    KEY_PREFIX = "referral-lock:"

    def __init__(
        self,
        redis_url: Optional[str] = None,
        timeout: float = None,
        blocking_timeout: float = None,
        client: Optional[redis.Redis] = None
    ):
        self.redis_url = redis_url
        self.timeout = timeout or float(os.getenv("REFERRAL_LOCK_TIMEOUT_SECONDS", "10"))
        self.blocking_timeout = blocking_timeout or float(os.getenv("REFERRAL_LOCK_WAIT_SECONDS", "5"))
        self.client = client

        if self.client is None and self.redis_url:
            try:
                self.client = redis.from_url(self.redis_url)
                self.client.ping()
                logger.info(f"Referral lock service connected to {self.redis_url}")
            except RedisError as e:
                logger.warning(f"Redis unavailable, referral locks disabled: {str(e)}")
                self.client = None

    def is_available(self) -> bool:
        """Check if locking is active."""
        return self.client is not None

    def health_check(self) -> dict:
        if not self.client:
            return {"status": "disabled"}
        try:
            self.client.ping()
            return {"status": "healthy"}
        except RedisError as e:
            return {"status": "unhealthy", "error": str(e)}

    def _acquire(self, referral_id: str):
        """Acquire the referral's lock, None when Redis cannot be reached."""
        lock = self.client.lock(
            f"{self.KEY_PREFIX}{referral_id}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout
        )
        try:
            acquired = lock.acquire()
        except RedisError as e:
            logger.warning(
                "Referral lock unavailable, relying on version check",
                extra={"referral_id": referral_id, "error": str(e)}
            )
            return None

        if not acquired:
            raise ConcurrentModificationError(
                f"Referral {referral_id} is being modified by another request"
            )
        return lock

    def _release(self, lock, referral_id: str) -> None:
        try:
            lock.release()
        except LockError as e:
            # Expired while held; the version check still guards the write
            logger.warning(
                "Referral lock expired before release",
                extra={"referral_id": referral_id, "error": str(e)}
            )
        except RedisError as e:
            logger.warning(
                "Failed to release referral lock",
                extra={"referral_id": referral_id, "error": str(e)}
            )

    @contextmanager
    def hold(self, referral_id: str) -> Iterator[bool]:
        """
        Hold the referral's lock for the duration of the block.

        Yields:
            True if the lock is held, False if running without it

        Raises:
            ConcurrentModificationError: the lock stayed busy past the wait time
        """
        if not self.client:
            yield False
            return

        with tracer.start_as_current_span("redis.referral_lock") as span:
            span.set_attribute("referral.id", referral_id)
            lock = self._acquire(referral_id)
            span.set_attribute("redis.lock_held", lock is not None)
            try:
                yield lock is not None
            finally:
                if lock is not None:
                    self._release(lock, referral_id)
