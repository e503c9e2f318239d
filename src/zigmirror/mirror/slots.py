"""Per-filename download slots shared by every request in the process."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class DownloadSlots:
    """Map of filename to an exclusive slot, holding only keys currently contended.

    A slot is created by the first caller for a key and dropped when the last
    holder or waiter leaves, so a request arriving while others still queue on
    the lock always joins the same lock. All map mutation happens on the event
    loop thread without an intervening ``await``.
    """

    def __init__(self) -> None:
        self._slots: Dict[str, _Slot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, key: object) -> bool:
        return key in self._slots

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(key) is slot:
                del self._slots[key]
