"""Per-key serialization of inventory read-modify-write cycles."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from time import perf_counter
from typing import TypeVar
from weakref import WeakValueDictionary

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import lifespan_session

from .domain import InventoryKey
from .errors import DeadlineExceeded
from .metrics import INVENTORY_DEADLINE_EXCEEDED_TOTAL, INVENTORY_LOCK_WAIT_SECONDS
from .repository import InventoryRepository

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# (loop time the operation must commit by, the timeout it was given)
_DEADLINE: ContextVar[tuple[float, float] | None] = ContextVar("inventory_deadline", default=None)


def _remaining() -> float | None:
    deadline = _DEADLINE.get()
    if deadline is None:
        return None
    return deadline[0] - asyncio.get_running_loop().time()


def _expired() -> DeadlineExceeded:
    deadline = _DEADLINE.get()
    limit = deadline[1] if deadline is not None else 0.0
    return DeadlineExceeded(f"operation exceeded its {limit}s deadline")


class KeyLocks:
    """One asyncio lock per inventory key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: WeakValueDictionary[InventoryKey, asyncio.Lock] = WeakValueDictionary()

    def _lock_for(self, key: InventoryKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: InventoryKey, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the key's lock; waiting longer than ``timeout`` raises ``DeadlineExceeded``."""

        lock = self._lock_for(key)
        started = perf_counter()
        if timeout is None:
            await lock.acquire()
        elif timeout <= 0:
            raise _expired()
        else:
            try:
                await asyncio.wait_for(lock.acquire(), timeout)
            except asyncio.TimeoutError as exc:
                raise _expired() from exc
        INVENTORY_LOCK_WAIT_SECONDS.observe(perf_counter() - started)
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, key: InventoryKey) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class StockTransactions:
    """Opens sessions for the inventory components.

    ``locked`` is the only way to mutate a record: the per-key lock is taken
    first, the record row is then read ``FOR UPDATE`` by the caller, and the
    session commits (or rolls back) before the lock is let go, so the record
    update and its ledger entry land together or not at all.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyLocks | None = None,
        *,
        default_timeout: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.locks = locks or KeyLocks()
        self.default_timeout = default_timeout

    @asynccontextmanager
    async def locked(self, key: InventoryKey) -> AsyncIterator[InventoryRepository]:
        async with self.locks.hold(key, _remaining()):
            async with lifespan_session(self._session_factory) as session:
                yield InventoryRepository(session)
                remaining = _remaining()
                if remaining is not None and remaining <= 0:
                    # Raising here rolls the session back instead of committing.
                    raise _expired()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[InventoryRepository]:
        """Unlocked unit of work for reads and append-only writes."""

        async with lifespan_session(self._session_factory) as session:
            yield InventoryRepository(session)

    async def within_deadline(self, operation: Awaitable[T], timeout: float | None = None) -> T:
        """Run ``operation`` under a deadline.

        The deadline bounds the wait for key locks and is checked again just
        before commit; a missed deadline rolls the transaction back. Statements
        already sent to the database are never cancelled half way, so the
        connection goes back to the pool with no transaction left open.
        """

        limit = timeout if timeout is not None else self.default_timeout
        if limit is None:
            return await operation
        token = _DEADLINE.set((asyncio.get_running_loop().time() + limit, limit))
        try:
            return await operation
        except DeadlineExceeded:
            INVENTORY_DEADLINE_EXCEEDED_TOTAL.inc()
            _LOGGER.warning("Inventory operation exceeded its %.3fs deadline and was rolled back", limit)
            raise
        finally:
            _DEADLINE.reset(token)
