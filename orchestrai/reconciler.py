"""Merge inbound progress updates into workflow state.

``apply_update`` is a pure function of the current snapshot, the update and
the receipt time. Push frames and poll responses may interleave or arrive
twice; the status rank and progress checks below keep the visible state from
ever moving backwards, and the log deduplication keeps replays harmless.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .constants import DEFAULT_DEDUP_WINDOW
from .contracts import LogEntry, ProgressUpdate, Workflow, WorkflowStatus, utcnow
from .errors import StaleUpdateDiscarded

logger = logging.getLogger(__name__)


def rank(status: WorkflowStatus) -> int:
    """pending(0) < running(1) < completed(2) = failed(2)."""
    return status.rank


def _next_status(state: Workflow, update: ProgressUpdate) -> WorkflowStatus:
    if update.status is None:
        return state.status
    if rank(update.status) < rank(state.status):
        raise StaleUpdateDiscarded(
            f"{update.status.value} received after {state.status.value} "
            f"for workflow_id={state.id}"
        )
    if state.is_terminal and update.status is not state.status:
        raise StaleUpdateDiscarded(
            f"{update.status.value} received after terminal {state.status.value} "
            f"for workflow_id={state.id}"
        )
    return update.status


def _next_progress(
    state: Workflow, update: ProgressUpdate, status: WorkflowStatus
) -> int:
    if status is WorkflowStatus.COMPLETED:
        return 100
    if state.status is WorkflowStatus.FAILED or update.progress is None:
        return state.progress
    if update.progress >= state.progress:
        return update.progress
    if status is not WorkflowStatus.FAILED:
        logger.debug(
            f"Ignoring progress regression {state.progress} -> {update.progress} "
            f"for workflow_id={state.id}"
        )
    return state.progress


def _append_log(
    log: Tuple[LogEntry, ...],
    lines: Sequence[str],
    received_at: datetime,
    dedup_window: int,
) -> Tuple[LogEntry, ...]:
    """Append ``lines`` skipping any already present in the recent tail.

    The tail is ``dedup_window`` entries plus room for every line of this
    update, so re-applying the same update never appends anything.
    """
    if not lines:
        return log
    window = dedup_window + len(lines)
    entries: List[LogEntry] = list(log)
    for line in lines:
        if any(entry.message == line for entry in entries[-window:]):
            continue
        entries.append(LogEntry(timestamp=received_at, message=line))
    return tuple(entries)


def apply_update(
    state: Workflow,
    update: ProgressUpdate,
    *,
    received_at: Optional[datetime] = None,
    dedup_window: int = DEFAULT_DEDUP_WINDOW,
) -> Workflow:
    """Fold ``update`` into ``state`` and return the new snapshot.

    Args:
        state: Current snapshot of the active workflow.
        update: Inbound update from a status source.
        received_at: Local receipt time used to stamp new log lines and
            ``updated_at``. Defaults to now.
        dedup_window: Number of trailing log entries checked for duplicates.

    Returns:
        ``state`` itself when the update is for another workflow or is stale,
        otherwise a new ``Workflow``.
    """
    if update.workflow_id != state.id:
        logger.debug(
            f"Ignoring update for workflow_id={update.workflow_id}, "
            f"active workflow_id={state.id}"
        )
        return state

    try:
        status = _next_status(state, update)
    except StaleUpdateDiscarded as e:
        logger.debug(f"Discarded stale update: {e}")
        return state

    received_at = received_at or utcnow()
    lines: List[str] = []
    if update.message:
        lines.append(update.message)
    lines.extend(update.log_lines)
    if update.error:
        lines.append(f"Error: {update.error}")

    return state.model_copy(
        update={
            "status": status,
            "progress": _next_progress(state, update, status),
            "log": _append_log(state.log, lines, received_at, dedup_window),
            "error": state.error or update.error,
            "updated_at": received_at,
        }
    )
