"""WebSocket status source with fixed-delay reconnection."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import WebSocketException

from ..constants import DEFAULT_RECONNECT_BUDGET, DEFAULT_RECONNECT_DELAY
from ..contracts import ProgressUpdate
from ..errors import ParseError, TransportDegraded
from ..utils.retry import wait_before_retry
from .base import BaseStatusSource, DegradedCallback

logger = logging.getLogger(__name__)

# Handshake timeouts are not OSError before Python 3.11
_CHANNEL_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)

CONNECTED_NOTICE = "Connected to workflow progress stream"
RECONNECTED_NOTICE = (
    "Reconnected to workflow progress stream; updates sent during the gap may be missing"
)


class WebSocketStatusSource(BaseStatusSource):
    """Follow a workflow over a persistent WebSocket channel.

    Usage::

        source = WebSocketStatusSource(workflow_id, url)
        await source.connect()
        async for update in source.updates():
            ...
        await source.close()

    When the channel drops while the workflow is still running, the source
    waits ``reconnect_delay`` seconds and reconnects. More than
    ``reconnect_budget`` consecutive failed attempts raise
    ``TransportDegraded`` out of :meth:`updates`.
    """

    def __init__(
        self,
        workflow_id: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        reconnect_budget: int = DEFAULT_RECONNECT_BUDGET,
        connector: Callable[..., Any] = ws_connect,
        on_degraded: Optional[DegradedCallback] = None,
    ) -> None:
        super().__init__(workflow_id, on_degraded)
        self.url = url
        self.headers = headers or {}
        self.reconnect_delay = reconnect_delay
        self.reconnect_budget = reconnect_budget
        self._connector = connector
        self._ws: Optional[Any] = None

    async def connect(self) -> None:
        """Open the channel.

        Raises:
            TransportDegraded: If the channel cannot be established.
        """
        if self._ws is not None:
            return
        try:
            self._ws = await self._connector(
                self.url, additional_headers=self.headers or None
            )
        except _CHANNEL_ERRORS as e:
            raise TransportDegraded(f"Cannot open {self.url}: {e}") from e
        logger.info(f"Progress stream connected for workflow_id={self.workflow_id}")

    async def disconnect(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    async def updates(self) -> AsyncIterator[ProgressUpdate]:
        failures = 0
        reconnecting = False
        while not self._stop.is_set():
            if self._ws is None:
                try:
                    await self.connect()
                except TransportDegraded as e:
                    failures += 1
                    logger.warning(
                        f"Reconnect attempt {failures} failed for "
                        f"workflow_id={self.workflow_id}: {e}"
                    )
                    if failures > self.reconnect_budget:
                        raise TransportDegraded(
                            f"Progress stream unavailable after {failures} attempts"
                        ) from e
                    if await wait_before_retry(self.reconnect_delay, self._stop):
                        return
                    continue

            failures = 0
            yield ProgressUpdate.notice(
                self.workflow_id, RECONNECTED_NOTICE if reconnecting else CONNECTED_NOTICE
            )

            ws = self._ws
            if ws is None or self._stop.is_set():
                return
            try:
                async for raw in ws:
                    try:
                        update = ProgressUpdate.from_frame(raw)
                    except ParseError as e:
                        logger.warning(
                            f"Dropping frame for workflow_id={self.workflow_id}: {e}"
                        )
                        continue
                    if not self._accepts(update):
                        continue
                    yield update
                    if update.is_terminal:
                        return
            except _CHANNEL_ERRORS as e:
                logger.warning(
                    f"Progress stream lost for workflow_id={self.workflow_id}: {e}"
                )

            await self.disconnect()
            if self._stop.is_set():
                return
            reconnecting = True
            yield ProgressUpdate.notice(
                self.workflow_id,
                f"Connection closed - reconnecting in {self.reconnect_delay:g}s",
            )
            if await wait_before_retry(self.reconnect_delay, self._stop):
                return
