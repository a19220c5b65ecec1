"""Status source factory and initialization."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Optional

from ..config import OrchestraiConfig, load_config
from .adapter import StatusSourceAdapter
from .base import BaseStatusSource, DegradedCallback
from .inmemory import InMemoryStatusSource
from .poll import PollingStatusSource
from .push import WebSocketStatusSource

if TYPE_CHECKING:
    from ..client import BackendClient


def get_status_source(
    workflow_id: str,
    client: "BackendClient",
    config: Optional[OrchestraiConfig] = None,
    on_degraded: Optional[DegradedCallback] = None,
    strategy: Optional[str] = None,
) -> StatusSourceAdapter:
    """Factory function to get the configured status source for a workflow."""

    config = config or load_config()
    sync = config.sync
    strategy = (
        strategy or os.getenv("ORCHESTRAI_SYNC_STRATEGY") or sync.strategy
    ).lower()

    def push() -> BaseStatusSource:
        return WebSocketStatusSource(
            workflow_id,
            client.subscription_url(workflow_id),
            headers=client.subscription_headers(),
            reconnect_delay=sync.reconnect_delay,
            reconnect_budget=sync.reconnect_budget,
        )

    def poll() -> BaseStatusSource:
        return PollingStatusSource(
            workflow_id,
            client,
            interval=sync.poll_interval,
            failure_budget=sync.reconnect_budget,
        )

    if strategy == "auto":
        return StatusSourceAdapter(
            workflow_id, push_factory=push, poll_factory=poll, on_degraded=on_degraded
        )
    elif strategy == "push":
        return StatusSourceAdapter(
            workflow_id, push_factory=push, on_degraded=on_degraded
        )
    elif strategy == "poll":
        return StatusSourceAdapter(
            workflow_id, poll_factory=poll, on_degraded=on_degraded
        )
    else:
        raise ValueError(f"Unsupported sync strategy: {strategy}")


__all__ = [
    "BaseStatusSource",
    "InMemoryStatusSource",
    "PollingStatusSource",
    "StatusSourceAdapter",
    "WebSocketStatusSource",
    "get_status_source",
]
