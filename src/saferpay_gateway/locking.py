"""Named locks shared between request-handling processes.

Reconciliation of an order must never run twice at the same time, and the
notification and browser-return requests may land on different workers, so
locks live in a shared store: the SQL database (default) or Redis.
"""

import asyncio
import logging
import secrets
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .database.models import ReconciliationLock, utcnow

logger = logging.getLogger(__name__)

RECONCILE_LOCK_PREFIX = "reconcile_"


def reconcile_lock_name(order_uuid: str) -> str:
    return RECONCILE_LOCK_PREFIX + order_uuid


class LockBackend(ABC):
    """Storage for named locks. Each holder is identified by a random token."""

    @abstractmethod
    async def acquire(self, name: str, token: str, ttl: float) -> bool:
        """Atomically take the lock unless a live holder exists."""
        raise NotImplementedError

    @abstractmethod
    async def release(self, name: str, token: str) -> None:
        """Drop the lock if it is still held with ``token``."""
        raise NotImplementedError

    @abstractmethod
    async def extend(self, name: str, token: str, ttl: float) -> bool:
        """Push the expiry of a lock held with ``token`` to ``ttl`` from now."""
        raise NotImplementedError

    @abstractmethod
    async def is_held(self, name: str) -> bool:
        raise NotImplementedError


class DatabaseLockBackend(LockBackend):
    """
    Locks stored as rows of ``reconciliation_locks``. The primary key on the
    lock name makes the insert the atomic acquisition step; expired rows are
    removed in the same transaction before inserting.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def acquire(self, name: str, token: str, ttl: float) -> bool:
        now = utcnow()
        async with self.session_factory() as session:
            await session.execute(
                delete(ReconciliationLock).where(
                    ReconciliationLock.name == name,
                    ReconciliationLock.expires_at < now,
                )
            )
            session.add(ReconciliationLock(
                name=name,
                token=token,
                expires_at=now + timedelta(seconds=ttl),
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def release(self, name: str, token: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                delete(ReconciliationLock).where(
                    ReconciliationLock.name == name,
                    ReconciliationLock.token == token,
                )
            )
            await session.commit()

    async def extend(self, name: str, token: str, ttl: float) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(ReconciliationLock)
                .where(
                    ReconciliationLock.name == name,
                    ReconciliationLock.token == token,
                )
                .values(expires_at=utcnow() + timedelta(seconds=ttl))
            )
            await session.commit()
            return result.rowcount > 0

    async def is_held(self, name: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ReconciliationLock.name).where(
                    ReconciliationLock.name == name,
                    ReconciliationLock.expires_at >= utcnow(),
                )
            )
            return result.first() is not None


class RedisLockBackend(LockBackend):
    """Locks stored as Redis keys set with NX and a millisecond expiry."""

    # Delete the key only if it still carries our token.
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("pexpire", KEYS[1], ARGV[2])
    end
    return 0
    """

    def __init__(self, redis_client: aioredis.Redis, key_prefix: str = "saferpay:lock:"):
        self.redis = redis_client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisLockBackend":
        client = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        return cls(client, **kwargs)

    def _key(self, name: str) -> str:
        return self.key_prefix + name

    @staticmethod
    def _millis(ttl: float) -> int:
        return max(1, int(ttl * 1000))

    async def acquire(self, name: str, token: str, ttl: float) -> bool:
        result = await self.redis.set(self._key(name), token, nx=True, px=self._millis(ttl))
        return bool(result)

    async def release(self, name: str, token: str) -> None:
        await self.redis.eval(self.RELEASE_SCRIPT, 1, self._key(name), token)

    async def extend(self, name: str, token: str, ttl: float) -> bool:
        result = await self.redis.eval(self.EXTEND_SCRIPT, 1, self._key(name), token, self._millis(ttl))
        return bool(result)

    async def is_held(self, name: str) -> bool:
        return bool(await self.redis.exists(self._key(name)))


class LockManager:
    """
    Mutual exclusion service with non-blocking acquisition and a bounded
    wait for release.

    Every acquisition gets its own random token. Release and renewal need
    that token, so a holder whose lease ran out can never drop or extend the
    lock of the next holder. Use keep_alive() around work that may outlast
    the lease.
    """

    def __init__(
        self,
        backend: LockBackend,
        timeout: float = 30.0,
        poll_interval: float = 0.025,
        max_poll_interval: float = 0.5,
    ):
        self.backend = backend
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval

    async def try_acquire(self, name: str, timeout: Optional[float] = None) -> Optional[str]:
        """Take the lock if nobody holds it. Never waits.

        Args:
            name: Lock name.
            timeout: Lease of the lock in seconds; defaults to the manager timeout.

        Returns:
            The holder token, or None if the lock is held elsewhere.
        """
        token = secrets.token_hex(16)
        if not await self.backend.acquire(name, token, timeout or self.timeout):
            logger.debug(f"Lock {name} is held elsewhere")
            return None
        logger.debug(f"Acquired lock {name}")
        return token

    async def release(self, name: str, token: str) -> None:
        await self.backend.release(name, token)
        logger.debug(f"Released lock {name}")

    async def renew(self, name: str, token: str, timeout: Optional[float] = None) -> bool:
        """Extend the lease of a lock we hold. False if it was lost meanwhile."""
        renewed = await self.backend.extend(name, token, timeout or self.timeout)
        if not renewed:
            logger.error(f"Lock {name} expired before it could be renewed")
        return renewed

    @asynccontextmanager
    async def keep_alive(self, name: str, token: str, timeout: Optional[float] = None):
        """Renew the lease every third of its length while the block runs."""
        lease = timeout or self.timeout

        async def renew_periodically() -> None:
            while True:
                await asyncio.sleep(lease / 3)
                if not await self.renew(name, token, lease):
                    return

        task = asyncio.create_task(renew_periodically())
        try:
            yield
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def lock_may_be_available(self, name: str) -> bool:
        return not await self.backend.is_held(name)

    async def wait_until_available(self, name: str, timeout: Optional[float] = None) -> bool:
        """Wait until the lock is free, polling with a growing delay.

        Args:
            name: Lock name.
            timeout: Maximum wait in seconds; defaults to the manager timeout.

        Returns:
            True if the lock became available, False if the wait expired.
        """
        deadline = time.monotonic() + (self.timeout if timeout is None else timeout)
        delay = self.poll_interval
        while await self.backend.is_held(name):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.info(f"Gave up waiting for lock {name}")
                return False
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, self.max_poll_interval)
        return True
