"""
Outbound delivery contract used by every component.

``send`` never raises: a delivery to a handle that has just gone away
reports ``False`` and the caller treats the peer as unreachable.
"""

import asyncio
from typing import Any, Iterable, Protocol


class Emitter(Protocol):
    async def send(self, handle: str, event: str, data: Any) -> bool: ...

    async def disconnect(self, handle: str) -> None: ...


async def fan_out(emitter: Emitter, handles: Iterable[str], event: str, data: Any) -> int:
    """Send the same event to many handles concurrently. Returns how many succeeded."""
    results = await asyncio.gather(
        *(emitter.send(handle, event, data) for handle in handles),
        return_exceptions=True,
    )
    return sum(1 for r in results if r is True)
