"""
Exclusion scopes for writes to the booking set.

Reservations for the same (tenant, staff, date) and transitions of the same
booking must run one at a time; everything else runs concurrently.

    async with exclusive(staff_day_key(tenant, staff_id, day)):
        await acquire_advisory_lock(session, key)
        ... re-check, insert, commit ...

The in-process registry serializes coroutines of one worker. On PostgreSQL the
transaction-scoped advisory lock extends the same key across processes; it is
released on commit or rollback.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .core.db import is_postgres

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Registry of asyncio locks created on demand and dropped when idle."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


_registry = KeyedLocks()


def staff_day_key(tenant: str, staff_id: int, day: date) -> str:
    return f"reserve:{tenant}:{staff_id}:{day.isoformat()}"


def booking_key(tenant: str, booking_ref: str) -> str:
    return f"booking:{tenant}:{booking_ref.strip().upper()}"


def exclusive(key: str):
    """Hold the process-wide lock for ``key``."""
    return _registry.hold(key)


def active_lock_count() -> int:
    return len(_registry)


async def acquire_advisory_lock(session: AsyncSession, key: str) -> None:
    """Take a PostgreSQL transaction-scoped advisory lock; no-op on other backends."""
    if not is_postgres(session):
        return
    await session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
    logger.debug(f"Advisory lock acquired: {key}")
