"""Failover between the push and poll status sources."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import AsyncIterator, Callable, Optional

from ..contracts import ProgressUpdate
from ..errors import TransportDegraded
from .base import BaseStatusSource, DegradedCallback

logger = logging.getLogger(__name__)

SourceFactory = Callable[[], BaseStatusSource]

POLLING_FALLBACK_NOTICE = "WebSocket unavailable - using polling for updates"
PUSH_LOST_NOTICE = "Progress stream lost - falling back to polling"


class StatusSourceAdapter:
    """A single live subscription to one workflow's status.

    Tries the push source first and falls back to polling when the push
    channel cannot be opened or exhausts its reconnect budget. Whatever the
    source, only updates for ``workflow_id`` are delivered, at most one of
    them terminal, and nothing is delivered after a terminal update or
    after :meth:`cancel`.
    """

    def __init__(
        self,
        workflow_id: str,
        *,
        push_factory: Optional[SourceFactory] = None,
        poll_factory: Optional[SourceFactory] = None,
        on_degraded: Optional[DegradedCallback] = None,
    ) -> None:
        if push_factory is None and poll_factory is None:
            raise ValueError("At least one status source is required")
        self.workflow_id = workflow_id
        self._push_factory = push_factory
        self._poll_factory = poll_factory
        self._on_degraded = on_degraded
        self._current: Optional[BaseStatusSource] = None
        self._stop = asyncio.Event()
        self._terminal_delivered = False

    @property
    def strategy(self) -> Optional[str]:
        """Name of the source currently attached, if any."""
        return type(self._current).__name__ if self._current else None

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    async def updates(self) -> AsyncIterator[ProgressUpdate]:
        async with aclosing(self._stream()) as stream:
            async for update in stream:
                if self._stop.is_set() or self._terminal_delivered:
                    break
                if update.workflow_id != self.workflow_id:
                    logger.warning(
                        f"Adapter for workflow_id={self.workflow_id} dropped update "
                        f"for workflow_id={update.workflow_id}"
                    )
                    continue
                if update.is_terminal:
                    self._terminal_delivered = True
                yield update
                if self._terminal_delivered:
                    break
        await self._release()

    async def _stream(self) -> AsyncIterator[ProgressUpdate]:
        if self._push_factory is not None:
            push = self._attach(self._push_factory())
            try:
                await push.connect()
            except TransportDegraded as e:
                logger.info(
                    f"Push channel unavailable for workflow_id={self.workflow_id}: {e}"
                )
                await push.close()
                if self._poll_factory is None:
                    self._report_degraded(str(e))
                    return
                yield ProgressUpdate.notice(self.workflow_id, POLLING_FALLBACK_NOTICE)
            else:
                try:
                    async for update in push.updates():
                        yield update
                    return
                except TransportDegraded as e:
                    logger.warning(
                        f"Push channel exhausted for workflow_id={self.workflow_id}: {e}"
                    )
                    await push.close()
                    if self._poll_factory is None:
                        self._report_degraded(str(e))
                        return
                    yield ProgressUpdate.notice(self.workflow_id, PUSH_LOST_NOTICE)

        if self._stop.is_set() or self._poll_factory is None:
            return
        poll = self._attach(self._poll_factory())
        async for update in poll.updates():
            yield update

    def _attach(self, source: BaseStatusSource) -> BaseStatusSource:
        source.on_degraded = self._report_degraded
        self._current = source
        if self._stop.is_set():
            source.cancel()
        return source

    def _report_degraded(self, notice: str) -> None:
        logger.warning(f"Status transport degraded for workflow_id={self.workflow_id}")
        if self._on_degraded is not None:
            self._on_degraded(notice)

    async def _release(self) -> None:
        source, self._current = self._current, None
        if source is not None:
            await source.close()

    def cancel(self) -> None:
        """Stop delivering updates immediately. Idempotent."""
        self._stop.set()
        if self._current is not None:
            self._current.cancel()

    async def close(self) -> None:
        """Cancel and release the attached source. Idempotent."""
        self.cancel()
        await self._release()
