"""In-memory status source for testing."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from ..contracts import ProgressUpdate
from .base import BaseStatusSource, DegradedCallback


class InMemoryStatusSource(BaseStatusSource):
    """Simple in-process queue of updates for unit tests."""

    def __init__(
        self, workflow_id: str, on_degraded: Optional[DegradedCallback] = None
    ) -> None:
        super().__init__(workflow_id, on_degraded)
        self._queue: asyncio.Queue[ProgressUpdate] = asyncio.Queue()
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def publish(self, update: ProgressUpdate) -> None:
        """Queue an update for delivery."""
        await self._queue.put(update)

    async def updates(self) -> AsyncIterator[ProgressUpdate]:
        while not self._stop.is_set():
            getter = asyncio.ensure_future(self._queue.get())
            stopper = asyncio.ensure_future(self._stop.wait())
            done, pending = await asyncio.wait(
                {getter, stopper}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            if getter not in done:
                return

            update = getter.result()
            if not self._accepts(update):
                continue
            yield update
            if update.is_terminal:
                return
