"""Per-record mutual exclusion for lifecycle operations.

The lock covers only the check-and-set step of a mutation, never the awaited
value transfer. While a transfer runs the record is marked in flight, so a
call arriving from any task (the recipient's own callback, a spawned task, a
separate HTTP request) sees the staged state and is rejected instead of
waiting on the transfer it is part of.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class RecordGuard:
    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}
        self._in_flight: set[int] = set()

    @asynccontextmanager
    async def hold(self, escrow_id: int) -> AsyncIterator[None]:
        """Serialize check-and-set on one record. The lock is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(escrow_id, asyncio.Lock())
        self._users[escrow_id] = self._users.get(escrow_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[escrow_id] -= 1
            if not self._users[escrow_id]:
                del self._users[escrow_id]
                del self._locks[escrow_id]

    def begin_transfer(self, escrow_id: int) -> None:
        self._in_flight.add(escrow_id)

    def end_transfer(self, escrow_id: int) -> None:
        self._in_flight.discard(escrow_id)

    def in_flight(self, escrow_id: int) -> bool:
        return escrow_id in self._in_flight
