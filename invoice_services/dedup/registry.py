"""In-flight registry serializing duplicate-check-then-persist per invoice key.

Two concurrent requests for the same invoice would otherwise both pass the
duplicate check before either persists. Holding the key's claim across
check and persist lets at most one request persist a given key at a time;
the next one re-checks after the first has written and sees the duplicate.

The registry is process-local: it orders requests inside one API process or
one worker, not across processes.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from invoice_services.dedup.service import DuplicateKey


class InFlightRegistry:
    """Mapping from DuplicateKey to the lock of the request currently holding it."""

    def __init__(self) -> None:
        self._locks: dict[DuplicateKey, asyncio.Lock] = {}
        self._holders: dict[DuplicateKey, int] = {}

    @asynccontextmanager
    async def claim(self, key: DuplicateKey | None) -> AsyncIterator[None]:
        """Hold the claim on a key for the duration of the block.

        A None key (invoice without full details) is never serialized.
        The claim is released on normal exit and on error.
        """
        if key is None:
            yield
            return

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def is_in_flight(self, key: DuplicateKey) -> bool:
        """Whether any request currently holds or waits for the key."""
        return key in self._locks

    def __len__(self) -> int:
        return len(self._locks)
