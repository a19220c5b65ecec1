"""Base interface for workflow status sources."""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from ..contracts import ProgressUpdate

logger = logging.getLogger(__name__)

DegradedCallback = Callable[[Optional[str]], None]


class BaseStatusSource(metaclass=abc.ABCMeta):
    """Abstract source of progress updates for a single workflow id."""

    def __init__(
        self, workflow_id: str, on_degraded: Optional[DegradedCallback] = None
    ) -> None:
        self.workflow_id = workflow_id
        self.on_degraded = on_degraded
        self._stop = asyncio.Event()

    async def connect(self) -> None:
        """Open the underlying channel (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Release the underlying channel (no-op by default)."""
        pass

    @abc.abstractmethod
    async def updates(self) -> AsyncIterator[ProgressUpdate]:
        """Yield updates until a terminal update, teardown or exhaustion."""
        raise NotImplementedError

    def cancel(self) -> None:
        """Stop producing events. Safe to call any number of times."""
        self._stop.set()

    async def close(self) -> None:
        """Cancel and release resources. Idempotent."""
        self.cancel()
        await self.disconnect()

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def _accepts(self, update: ProgressUpdate) -> bool:
        if update.workflow_id != self.workflow_id:
            logger.warning(
                f"Dropping update for workflow_id={update.workflow_id} "
                f"on source for workflow_id={self.workflow_id}"
            )
            return False
        return not self._stop.is_set()

    def _report_degraded(self, notice: str) -> None:
        if self.on_degraded is not None:
            self.on_degraded(notice)
