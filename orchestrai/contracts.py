"""Core data contracts for orchestrai workflows."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .constants import DEFAULT_REPOSITORY_HOSTS
from .errors import ParseError, ValidationError

_REPOSITORY_PATH = re.compile(r"^/[\w.-]+/[\w.-]+/?$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _clamp_progress(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return max(0, min(100, int(value)))
    except (TypeError, ValueError, OverflowError) as e:
        raise ValueError(f"Invalid progress value: {value!r}") from e


def _split_lines(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split("\n")
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Expected log lines, got {type(value).__name__}")
    return tuple(str(line) for line in value if str(line).strip())


def _normalize_status(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class WorkflowStatus(str, Enum):
    """Lifecycle of a workflow as reported by the backend."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        """Ordering used to reject out-of-order updates."""
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


_STATUS_RANK = {
    WorkflowStatus.PENDING: 0,
    WorkflowStatus.RUNNING: 1,
    WorkflowStatus.COMPLETED: 2,
    WorkflowStatus.FAILED: 2,
}


class WorkflowMode(str, Enum):
    """How the backend should drive the workflow."""

    SELF_CONTAINED = "self-contained"
    PROMPT_DRIVEN = "prompt-driven"


def is_repository_url(
    url: str, hosts: Sequence[str] = DEFAULT_REPOSITORY_HOSTS
) -> bool:
    """Return ``True`` for ``http(s)://<host>/<owner>/<repo>`` on a known host."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme not in ("http", "https"):
        return False
    host = parts.hostname or ""
    if host.startswith("www."):
        host = host[4:]
    allowed = {h.lower() for h in hosts}
    return host in allowed and bool(_REPOSITORY_PATH.match(parts.path))


class LogEntry(BaseModel):
    """One line of the activity log, stamped with local receipt time."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    message: str

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"


class ProgressUpdate(BaseModel):
    """A single inbound message reporting on one workflow.

    Frames from the push channel use camelCase keys (``workflowId``,
    ``logLines``) and sometimes a newline-joined ``logs`` string; polling
    responses use snake_case. Both spellings are accepted.

    ``synthetic`` updates are notices generated locally by a status source
    (connected, reconnect gap, fallback). They never carry a status or a
    progress value.
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    workflow_id: str = Field(
        validation_alias=AliasChoices("workflow_id", "workflowId", "id")
    )
    status: Optional[WorkflowStatus] = None
    progress: Optional[int] = None
    message: Optional[str] = None
    log_lines: Tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("log_lines", "logLines", "logs")
    )
    error: Optional[str] = None
    synthetic: bool = False

    @field_validator("progress", mode="before")
    @classmethod
    def clamp_progress(cls, value: Any) -> Optional[int]:
        return _clamp_progress(value)

    @field_validator("log_lines", mode="before")
    @classmethod
    def split_log_lines(cls, value: Any) -> Tuple[str, ...]:
        return _split_lines(value)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        return _normalize_status(value)

    @field_validator("message", "error", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal

    @classmethod
    def notice(cls, workflow_id: str, message: str) -> "ProgressUpdate":
        """Build a synthetic log-only update."""
        return cls(workflow_id=workflow_id, message=message, synthetic=True)

    @classmethod
    def from_frame(cls, raw: str | bytes) -> "ProgressUpdate":
        """Decode a JSON frame received on the push channel."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ParseError(f"Invalid JSON frame: {e}") from e
        return cls.from_payload(data)

    @classmethod
    def from_payload(
        cls, data: Any, workflow_id: Optional[str] = None
    ) -> "ProgressUpdate":
        """Validate a decoded payload.

        ``workflow_id`` fills in the id for status responses that omit it;
        an id present in the payload always wins.
        """
        if not isinstance(data, dict):
            raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
        if workflow_id is not None and not any(
            key in data for key in ("workflow_id", "workflowId", "id")
        ):
            data = {**data, "workflow_id": workflow_id}
        if data.get("synthetic"):
            data = {**data, "synthetic": False}
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ParseError(f"Invalid progress update: {e}") from e


class Workflow(BaseModel):
    """Immutable snapshot of one submitted workflow."""

    model_config = ConfigDict(frozen=True)

    id: str
    source_url: str
    prompt: Optional[str] = None
    mode: WorkflowMode = WorkflowMode.SELF_CONTAINED
    status: WorkflowStatus = WorkflowStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    log: Tuple[LogEntry, ...] = ()
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def start(
        cls,
        workflow_id: str,
        request: "WorkflowRequest",
        now: Optional[datetime] = None,
    ) -> "Workflow":
        """Initial pending state for a freshly created workflow."""
        now = now or utcnow()
        return cls(
            id=workflow_id,
            source_url=request.source_url,
            prompt=request.prompt,
            mode=request.mode,
            created_at=now,
            updated_at=now,
        )

    def log_messages(self) -> list[str]:
        return [entry.message for entry in self.log]


class WorkflowRequest(BaseModel):
    """Validated user input for a new workflow."""

    model_config = ConfigDict(frozen=True)

    source_url: str
    mode: WorkflowMode = WorkflowMode.SELF_CONTAINED
    prompt: Optional[str] = None

    @classmethod
    def from_input(
        cls,
        source_url: Optional[str],
        mode: WorkflowMode | str = WorkflowMode.SELF_CONTAINED,
        prompt: Optional[str] = None,
        hosts: Sequence[str] = DEFAULT_REPOSITORY_HOSTS,
    ) -> "WorkflowRequest":
        """Validate raw input locally.

        Raises:
            ValidationError: If the URL is missing or not a repository on one
                of ``hosts``, the mode is unknown, or a prompt-driven request
                has a blank prompt.
        """
        url = (source_url or "").strip()
        if not url:
            raise ValidationError("Repository URL is required", field="source_url")
        if not is_repository_url(url, hosts):
            raise ValidationError(
                f"Not a recognized repository URL: {url}", field="source_url"
            )

        try:
            workflow_mode = WorkflowMode(mode)
        except ValueError:
            raise ValidationError(f"Unknown workflow mode: {mode}", field="mode")

        text = (prompt or "").strip()
        if workflow_mode is WorkflowMode.PROMPT_DRIVEN and not text:
            raise ValidationError(
                "Prompt is required for prompt-driven mode", field="prompt"
            )
        if workflow_mode is WorkflowMode.SELF_CONTAINED:
            text = ""

        return cls(source_url=url, mode=workflow_mode, prompt=text or None)

    def to_payload(self) -> dict[str, Any]:
        """Body sent to the backend creation endpoint."""
        return {
            "repository_url": self.source_url,
            "task_prompt": self.prompt,
            "mode": self.mode.value,
        }


class WorkflowSummary(BaseModel):
    """One row of workflow history as listed by the backend."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    id: str = Field(validation_alias=AliasChoices("id", "workflow_id", "workflowId"))
    source_url: str = Field(
        default="",
        validation_alias=AliasChoices(
            "source_url", "repository_url", "githubUrl", "repoUrl"
        ),
    )
    prompt: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("prompt", "task_prompt")
    )
    mode: WorkflowMode = WorkflowMode.SELF_CONTAINED
    status: WorkflowStatus = WorkflowStatus.PENDING
    progress: int = 0
    logs: Tuple[str, ...] = ()
    error: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )
    updated_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )

    @field_validator("progress", mode="before")
    @classmethod
    def clamp_progress(cls, value: Any) -> int:
        return _clamp_progress(value) or 0

    @field_validator("logs", mode="before")
    @classmethod
    def split_log_lines(cls, value: Any) -> Tuple[str, ...]:
        return _split_lines(value)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        return _normalize_status(value or WorkflowStatus.PENDING)

    @field_validator("source_url", mode="before")
    @classmethod
    def default_source_url(cls, value: Any) -> Any:
        return value or ""

    @field_validator("mode", mode="before")
    @classmethod
    def default_mode(cls, value: Any) -> Any:
        return value or WorkflowMode.SELF_CONTAINED

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def repo_name(self) -> str:
        """``owner/repo`` extracted from the source URL."""
        parts = [p for p in self.source_url.rstrip("/").split("/") if p]
        if len(parts) < 2:
            return self.source_url
        repo = parts[-1][:-4] if parts[-1].endswith(".git") else parts[-1]
        return f"{parts[-2]}/{repo}"

    def as_workflow(self) -> Workflow:
        """Frozen workflow snapshot for read-only display."""
        updated = self.updated_at or self.created_at
        progress = 100 if self.status is WorkflowStatus.COMPLETED else self.progress
        return Workflow(
            id=self.id,
            source_url=self.source_url,
            prompt=self.prompt,
            mode=self.mode,
            status=self.status,
            progress=progress,
            log=tuple(LogEntry(timestamp=updated, message=line) for line in self.logs),
            error=self.error,
            created_at=self.created_at,
            updated_at=updated,
        )
