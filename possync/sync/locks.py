"""
Per-tenant sync locks.
A tenant's authenticate -> fetch -> reconcile -> apply sequence, and token refresh, run under
the tenant lock. Locks are try-acquire only: a caller that finds the lock held coalesces
instead of queueing.
"""

import asyncio
import contextlib
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional

import structlog
from postgrest.exceptions import APIError
from supabase import Client

from possync.config import settings

logger = structlog.get_logger()


class TenantLockManager(ABC):
    """Exclusive lock keyed by tenant id."""

    @abstractmethod
    async def try_acquire(self, tenant_id: str) -> bool:
        """Take the tenant lock without waiting. Returns False if it is already held."""
        pass

    @abstractmethod
    async def release(self, tenant_id: str) -> None:
        pass

    @abstractmethod
    async def extend(self, tenant_id: str) -> bool:
        """Confirm this manager still holds the tenant lock, renewing any expiry. False if it was lost."""
        pass

    @asynccontextmanager
    async def hold(self, tenant_id: str) -> AsyncIterator[bool]:
        """
        Try to take the lock for the duration of the block.
        Yields whether the lock was acquired; it is released on every exit path.
        """
        acquired = await self.try_acquire(tenant_id)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(tenant_id)

    @asynccontextmanager
    async def keep_alive(self, tenant_id: str) -> AsyncIterator[None]:
        """Keep a held lock from expiring while the block runs. Locks without expiry need nothing."""
        yield


class InProcessTenantLockManager(TenantLockManager):
    """asyncio.Lock per tenant. Only valid when a single process runs syncs."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()  # guards the locks dict

    async def _get_lock(self, tenant_id: str) -> asyncio.Lock:
        async with self._locks_lock:
            if tenant_id not in self._locks:
                self._locks[tenant_id] = asyncio.Lock()
            return self._locks[tenant_id]

    async def try_acquire(self, tenant_id: str) -> bool:
        lock = await self._get_lock(tenant_id)
        if lock.locked():
            return False
        # Uncontended acquire completes without yielding to the loop
        await lock.acquire()
        return True

    async def release(self, tenant_id: str) -> None:
        lock = self._locks.get(tenant_id)
        if lock is not None and lock.locked():
            lock.release()
            # Nobody ever waits on these locks, so an unlocked one can go
            del self._locks[tenant_id]

    async def extend(self, tenant_id: str) -> bool:
        lock = self._locks.get(tenant_id)
        return lock is not None and lock.locked()

    @property
    def tenant_count(self) -> int:
        return len(self._locks)


class SupabaseTenantLockManager(TenantLockManager):
    """
    Lock rows in the sync_locks table, shared by every process using the same database.
    Each row carries its holder and an expiry so a crashed holder cannot block a tenant forever.
    A live holder renews its row through keep_alive() well before the expiry.
    """

    def __init__(self, client: Client, ttl_seconds: Optional[int] = None):
        self.client = client
        self.ttl_seconds = ttl_seconds or settings.sync_lock_ttl_seconds
        self.holder_id = f"possync-{uuid.uuid4()}"
        self.renew_interval = self.ttl_seconds / 3

    def _expiry(self, now: datetime) -> str:
        return (now + timedelta(seconds=self.ttl_seconds)).isoformat()

    def _try_acquire(self, tenant_id: str) -> bool:
        now = datetime.now(timezone.utc)
        # Expired locks belong to holders that died mid-sync
        (
            self.client.table("sync_locks")
            .delete()
            .eq("tenant_id", tenant_id)
            .lt("expires_at", now.isoformat())
            .execute()
        )
        try:
            self.client.table("sync_locks").insert(
                {
                    "tenant_id": tenant_id,
                    "holder": self.holder_id,
                    "expires_at": self._expiry(now),
                }
            ).execute()
        except APIError as e:
            if e.code == "23505":  # unique_violation: someone else holds the lock
                return False
            raise
        return True

    async def try_acquire(self, tenant_id: str) -> bool:
        acquired = await asyncio.to_thread(self._try_acquire, tenant_id)
        if not acquired:
            logger.debug("Tenant lock held elsewhere", tenant_id=tenant_id)
        return acquired

    def _release(self, tenant_id: str) -> None:
        (
            self.client.table("sync_locks")
            .delete()
            .eq("tenant_id", tenant_id)
            .eq("holder", self.holder_id)
            .execute()
        )

    async def release(self, tenant_id: str) -> None:
        try:
            await asyncio.to_thread(self._release, tenant_id)
        except Exception as e:
            # Row still expires after the TTL
            logger.error("Failed to release tenant lock", tenant_id=tenant_id, error=str(e))

    def _extend(self, tenant_id: str) -> bool:
        result = (
            self.client.table("sync_locks")
            .update({"expires_at": self._expiry(datetime.now(timezone.utc))})
            .eq("tenant_id", tenant_id)
            .eq("holder", self.holder_id)
            .execute()
        )
        return bool(result.data)

    async def extend(self, tenant_id: str) -> bool:
        extended = await asyncio.to_thread(self._extend, tenant_id)
        if not extended:
            logger.warning("Tenant lock no longer held", tenant_id=tenant_id, holder=self.holder_id)
        return extended

    async def _renew(self, tenant_id: str, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                if not await self.extend(tenant_id):
                    return
            except Exception as e:
                # The next renewal, or the check before apply, decides
                logger.error("Failed to renew tenant lock", tenant_id=tenant_id, error=str(e))

    @asynccontextmanager
    async def keep_alive(self, tenant_id: str) -> AsyncIterator[None]:
        renewer = asyncio.create_task(self._renew(tenant_id, self.renew_interval))
        try:
            yield
        finally:
            renewer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await renewer
