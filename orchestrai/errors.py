"""Error taxonomy for orchestrai."""

from __future__ import annotations

from typing import Optional


class OrchestraiError(Exception):
    """Base class for all orchestrai errors."""


class ValidationError(OrchestraiError):
    """Submission input is malformed. Raised before any network call."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class BackendError(OrchestraiError):
    """The backend answered with an error or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SubmissionError(BackendError):
    """Workflow creation was rejected or the backend was unreachable."""


class TransportDegraded(OrchestraiError):
    """A status source exhausted its reconnect or failure budget."""


class StaleUpdateDiscarded(OrchestraiError):
    """An update would move a workflow backwards and was ignored."""


class ParseError(OrchestraiError):
    """A single inbound frame or status payload could not be decoded."""
