"""
Keyed asyncio locks.

Serializes read-modify-write sequences that share a key within one
process: ledger appends and metrics per carrier, scheduling and
reconciliation per sale, transitions per delivery and code allocation per
sequence scope.

Two ways to hold a key:
- hold(key): an async context manager, for operations that commit before
  leaving the block (delivery transitions).
- hold_for_transaction(session, key): held until the session's outermost
  transaction commits or rolls back, so a second session cannot read the
  row before the first one's write is committed. Re-entrant per session.

Only coroutines in this process are serialized. Across processes the row
locks (SELECT ... FOR UPDATE) taken inside the same sections do the work
on PostgreSQL; SQLite has no row locks and serializes writers per file.
"""
import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, List, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session


HELD_LOCKS_KEY = "held_keyed_locks"


class KeyedLock:
    """A lazily-populated map of asyncio.Lock objects keyed by any hashable."""

    def __init__(self, name: str):
        self.name = name
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = defaultdict(int)

    async def _acquire(self, key: Hashable) -> None:
        self._waiters[key] += 1
        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            await lock.acquire()
        except BaseException:
            self._forget(key)
            raise

    def _release(self, key: Hashable) -> None:
        self._locks[key].release()
        self._forget(key)

    def _forget(self, key: Hashable) -> None:
        self._waiters[key] -= 1
        if self._waiters[key] == 0:
            # Nobody else is queued on this key; drop it so the map stays small
            del self._waiters[key]
            self._locks.pop(key, None)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        await self._acquire(key)
        try:
            yield
        finally:
            self._release(key)

    async def hold_for_transaction(self, session: AsyncSession, key: Hashable) -> None:
        """Acquire key until the session's outermost transaction ends."""
        held: List[Tuple["KeyedLock", Hashable]] = session.sync_session.info.setdefault(HELD_LOCKS_KEY, [])
        if (self, key) in held:
            return

        await self._acquire(key)
        held.append((self, key))
        # Make sure there is a transaction whose end releases the key
        await session.connection()


@event.listens_for(Session, "after_transaction_end")
def _release_transaction_locks(session: Session, transaction) -> None:
    if transaction.parent is not None:
        return
    held = session.info.pop(HELD_LOCKS_KEY, None)
    for keyed_lock, key in reversed(held or []):
        keyed_lock._release(key)


carrier_locks = KeyedLock("carrier")
sale_locks = KeyedLock("sale")
delivery_locks = KeyedLock("delivery")
sequence_locks = KeyedLock("sequence")
