"""Polling status source backed by the HTTP status endpoint."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncIterator, Optional

from ..constants import DEFAULT_POLL_INTERVAL, DEFAULT_RECONNECT_BUDGET
from ..contracts import ProgressUpdate
from ..errors import BackendError, ParseError
from ..utils.retry import wait_before_retry
from .base import BaseStatusSource, DegradedCallback

if TYPE_CHECKING:
    from ..client import BackendClient

logger = logging.getLogger(__name__)


class PollingStatusSource(BaseStatusSource):
    """Request the workflow status every ``interval`` seconds.

    The first request is issued immediately. Polling stops by itself after a
    terminal update. After more than ``failure_budget`` consecutive failed
    requests a degraded notice is reported, but polling carries on.
    """

    def __init__(
        self,
        workflow_id: str,
        client: "BackendClient",
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        failure_budget: int = DEFAULT_RECONNECT_BUDGET,
        on_degraded: Optional[DegradedCallback] = None,
    ) -> None:
        super().__init__(workflow_id, on_degraded)
        self._client = client
        self.interval = interval
        self.failure_budget = failure_budget

    async def updates(self) -> AsyncIterator[ProgressUpdate]:
        failures = 0
        while not self._stop.is_set():
            try:
                update = await self._client.get_status(self.workflow_id)
            except BackendError as e:
                failures += 1
                logger.warning(
                    f"Status poll failed for workflow_id={self.workflow_id} "
                    f"({failures} in a row): {e}"
                )
                if failures == self.failure_budget + 1:
                    self._report_degraded(f"Status polling is failing: {e}")
            except ParseError as e:
                logger.warning(
                    f"Dropping unparsable status for workflow_id={self.workflow_id}: {e}"
                )
            else:
                failures = 0
                if self._accepts(update):
                    yield update
                    if update.is_terminal:
                        logger.info(
                            f"Stopped polling workflow_id={self.workflow_id}: "
                            f"{update.status.value}"
                        )
                        return

            if await wait_before_retry(self.interval, self._stop):
                return
