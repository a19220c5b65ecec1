"""History of previously created workflows."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Iterator, Optional, Tuple

from .contracts import WorkflowSummary, utcnow

if TYPE_CHECKING:
    from .client import BackendClient

logger = logging.getLogger(__name__)


class HistoryStore:
    """Workflow summaries, newest first, refreshed on demand.

    Independent of the active workflow: nothing the controller applies ever
    reaches this store. A failed refresh leaves the previous list in place.
    """

    def __init__(self, client: "BackendClient") -> None:
        self._client = client
        self._workflows: Tuple[WorkflowSummary, ...] = ()
        self.refreshed_at: Optional[datetime] = None

    @property
    def workflows(self) -> Tuple[WorkflowSummary, ...]:
        return self._workflows

    async def refresh(self) -> Tuple[WorkflowSummary, ...]:
        """Reload the list from the backend.

        Raises:
            BackendError: If the backend cannot be reached.
        """
        rows = await self._client.list_workflows()
        self._workflows = tuple(
            sorted(rows, key=lambda wf: wf.created_at, reverse=True)
        )
        self.refreshed_at = utcnow()
        logger.debug(f"Loaded {len(self._workflows)} workflows from history")
        return self._workflows

    def get(self, workflow_id: str) -> Optional[WorkflowSummary]:
        for workflow in self._workflows:
            if workflow.id == workflow_id:
                return workflow
        return None

    def __len__(self) -> int:
        return len(self._workflows)

    def __iter__(self) -> Iterator[WorkflowSummary]:
        return iter(self._workflows)
