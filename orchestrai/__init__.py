"""orchestrai: submit repositories to an orchestration backend and follow their workflows."""

from .client import BackendClient, get_client
from .config import OrchestraiConfig, load_config
from .contracts import (
    LogEntry,
    ProgressUpdate,
    Workflow,
    WorkflowMode,
    WorkflowRequest,
    WorkflowStatus,
    WorkflowSummary,
)
from .controller import WorkflowController, WorkflowView
from .history import HistoryStore
from .reconciler import apply_update
from .transports import get_status_source

__version__ = "0.1.0"
__all__ = [
    "BackendClient",
    "HistoryStore",
    "LogEntry",
    "OrchestraiConfig",
    "ProgressUpdate",
    "Workflow",
    "WorkflowController",
    "WorkflowMode",
    "WorkflowRequest",
    "WorkflowStatus",
    "WorkflowSummary",
    "WorkflowView",
    "apply_update",
    "get_client",
    "get_status_source",
    "load_config",
]
