"""Workflow controller: submission and the single active subscription."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from .config import OrchestraiConfig, load_config
from .contracts import Workflow, WorkflowMode, WorkflowRequest, WorkflowSummary
from .reconciler import apply_update
from .transports import StatusSourceAdapter, get_status_source
from .transports.base import DegradedCallback

if TYPE_CHECKING:
    from .client import BackendClient
    from .contracts import ProgressUpdate

logger = logging.getLogger(__name__)

SourceFactory = Callable[[str, DegradedCallback], StatusSourceAdapter]


class WorkflowView(BaseModel):
    """Immutable snapshot handed to observers and the rendering layer."""

    model_config = ConfigDict(frozen=True)

    workflow: Optional[Workflow] = None
    degraded: Optional[str] = None
    live: bool = False
    read_only: bool = False


Observer = Callable[[WorkflowView], None]


class WorkflowController:
    """Turns submissions into one active, observable workflow.

    At most one status adapter is live at a time. Every update it delivers is
    folded into the active snapshot with :func:`apply_update`, and observers
    are notified of each new :class:`WorkflowView`. Updates from an adapter
    that has since been replaced are ignored.
    """

    def __init__(
        self,
        client: "BackendClient",
        config: Optional[OrchestraiConfig] = None,
        source_factory: Optional[SourceFactory] = None,
    ) -> None:
        self._client = client
        self._config = config or load_config()
        self._source_factory = source_factory or self._default_source
        self._view = WorkflowView()
        self._observers: List[Observer] = []
        self._adapter: Optional[StatusSourceAdapter] = None
        self._task: Optional[asyncio.Task[None]] = None

    def _default_source(
        self, workflow_id: str, on_degraded: DegradedCallback
    ) -> StatusSourceAdapter:
        return get_status_source(
            workflow_id, self._client, self._config, on_degraded=on_degraded
        )

    @property
    def view(self) -> WorkflowView:
        return self._view

    @property
    def active(self) -> Optional[Workflow]:
        return self._view.workflow

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer`` for view changes. Returns an unsubscribe hook."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _publish(self, view: WorkflowView) -> None:
        self._view = view
        for observer in list(self._observers):
            try:
                observer(view)
            except Exception:
                logger.exception("Workflow observer failed")

    # ------------------------------------------------------------------
    async def submit(
        self,
        source_url: Optional[str],
        mode: Union[WorkflowMode, str] = WorkflowMode.SELF_CONTAINED,
        prompt: Optional[str] = None,
    ) -> Workflow:
        """Create a workflow on the backend and make it the active one.

        Args:
            source_url: Repository URL on one of the configured hosts.
            mode: ``self-contained`` or ``prompt-driven``.
            prompt: Task prompt, required for prompt-driven mode.

        Returns:
            The new workflow in ``pending`` status.

        Raises:
            ValidationError: If the input is invalid. The backend is not
                contacted.
            SubmissionError: If the backend rejects the request or cannot be
                reached. The current state is left untouched.
        """
        request = WorkflowRequest.from_input(
            source_url, mode, prompt, hosts=self._config.repository_hosts
        )
        workflow_id = await self._client.create_workflow(request)
        workflow = Workflow.start(workflow_id, request)
        await self._activate(workflow)
        logger.info(f"Workflow workflow_id={workflow_id} is now active")
        return workflow

    async def select_active(
        self, workflow: Union[Workflow, WorkflowSummary]
    ) -> Workflow:
        """Switch to a workflow picked from history.

        Terminal workflows are exposed read-only with no live subscription.
        A workflow that is still running is followed again.
        """
        if isinstance(workflow, WorkflowSummary):
            workflow = workflow.as_workflow()
        await self._activate(workflow)
        return workflow

    async def wait(self) -> Optional[Workflow]:
        """Wait for the live subscription to end and return the final snapshot."""
        if self._task is not None:
            await self._task
        return self._view.workflow

    async def close(self) -> None:
        """Tear down the live subscription, if any. Idempotent."""
        await self._detach()
        if self._view.live:
            self._publish(self._view.model_copy(update={"live": False}))

    # ------------------------------------------------------------------
    async def _activate(self, workflow: Workflow) -> None:
        await self._detach()
        if workflow.is_terminal:
            self._publish(WorkflowView(workflow=workflow, read_only=True))
            return

        adapter: Optional[StatusSourceAdapter] = None

        def on_degraded(notice: Optional[str]) -> None:
            self._degrade(adapter, notice)

        adapter = self._source_factory(workflow.id, on_degraded)
        self._adapter = adapter
        self._publish(WorkflowView(workflow=workflow, live=True))
        self._task = asyncio.create_task(self._consume(adapter))

    async def _detach(self) -> None:
        adapter, self._adapter = self._adapter, None
        task, self._task = self._task, None
        if adapter is not None:
            adapter.cancel()
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if adapter is not None:
            await adapter.close()

    async def _consume(self, adapter: StatusSourceAdapter) -> None:
        try:
            async for update in adapter.updates():
                self._apply(adapter, update)
        except Exception:
            logger.exception(
                f"Status subscription failed for workflow_id={adapter.workflow_id}"
            )
        finally:
            await adapter.close()
            if adapter is self._adapter:
                self._adapter = None
                workflow = self._view.workflow
                self._publish(
                    self._view.model_copy(
                        update={
                            "live": False,
                            "read_only": bool(workflow and workflow.is_terminal),
                        }
                    )
                )

    def _apply(self, adapter: StatusSourceAdapter, update: "ProgressUpdate") -> None:
        if adapter is not self._adapter or adapter.closed:
            logger.debug(
                f"Ignoring update from superseded adapter for "
                f"workflow_id={update.workflow_id}"
            )
            return
        current = self._view.workflow
        if current is None:
            return

        workflow = apply_update(
            current, update, dedup_window=self._config.sync.dedup_window
        )
        degraded = self._view.degraded if update.synthetic else None
        if workflow is current and degraded == self._view.degraded:
            return
        self._publish(
            self._view.model_copy(update={"workflow": workflow, "degraded": degraded})
        )

    def _degrade(
        self, adapter: Optional[StatusSourceAdapter], notice: Optional[str]
    ) -> None:
        if adapter is None or adapter is not self._adapter:
            return
        self._publish(self._view.model_copy(update={"degraded": notice}))
