"""Request, response and event models for the sandbox engine.

These pydantic models are the contract for any API layered on top of the
engine (local call, RPC or HTTP).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from wtsandbox.errors import InternalError


def _utc_now() -> datetime:
    return datetime.now(UTC)


class FileOperation(str, Enum):
    """Supported file change operations."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ExecutionStatus(str, Enum):
    """Lifecycle status of an execution request."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT}
)


class FileChange(BaseModel):
    """A proposed change to a single file.

    ``operation`` is kept as a plain string so that unsupported operations
    survive parsing and are rejected by the executor as an input error.
    """

    path: str = Field(..., description="Path relative to the workspace root.")
    content: str = Field(default="", description="New file content (ignored for delete).")
    operation: str = Field(default=FileOperation.UPDATE.value, description="create, update or delete.")

    @property
    def size(self) -> int:
        """Content size in UTF-8 bytes."""
        return len(self.content.encode("utf-8"))


class ValidationStep(BaseModel):
    """A single verification command (build, test, lint)."""

    name: str = ""
    command: str
    args: list[str] = Field(default_factory=list)
    required: bool = False
    description: str = ""

    @property
    def display(self) -> str:
        return " ".join([self.command, *self.args])


class ExecutionRequest(BaseModel):
    """A set of file changes plus the steps that verify them."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    type: str = Field(default="validation", description="validation, test, build, ...")
    files: list[FileChange] = Field(default_factory=list)
    validation_steps: list[ValidationStep] = Field(default_factory=list)
    context: dict[str, str] = Field(default_factory=dict)


class ExecutionResult(BaseModel):
    """Outcome of one command run inside a worktree."""

    command: str
    output: str = ""
    error: str = ""
    exit_code: int = 0
    worktree_id: str = ""
    timestamp: datetime = Field(default_factory=_utc_now)
    timed_out: bool = False
    duration: float = Field(default=0.0, description="Wall-clock seconds.")

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class ExecutionResponse(BaseModel):
    """Structured result of an execution request.

    Status only moves forward: ``pending -> running -> terminal``.  Use
    :meth:`mark_running` and :meth:`finish` rather than assigning ``status``
    directly; they set ``end_time`` exactly once, at the terminal transition.
    """

    request_id: str
    worktree_id: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    start_time: datetime = Field(default_factory=_utc_now)
    end_time: datetime | None = None
    results: list[ExecutionResult] = Field(default_factory=list)
    diff: str = ""
    error: str = ""

    def mark_running(self) -> None:
        if self.status is not ExecutionStatus.PENDING:
            raise InternalError(
                "mark_running", f"illegal transition {self.status.value} -> running"
            )
        self.status = ExecutionStatus.RUNNING

    def finish(self, status: ExecutionStatus, error: str = "") -> None:
        """Move to the terminal *status*, recording *error* and ``end_time``."""
        if not status.is_terminal:
            raise InternalError("finish", f"{status.value} is not a terminal status")
        if self.status.is_terminal:
            raise InternalError(
                "finish", f"illegal transition {self.status.value} -> {status.value}"
            )
        self.status = status
        self.error = error
        self.end_time = _utc_now()

    @property
    def duration(self) -> float:
        """Elapsed seconds; measured up to now while still in flight."""
        end = self.end_time or _utc_now()
        return (end - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.status is ExecutionStatus.COMPLETED


class EventType(str, Enum):
    """Sandbox lifecycle event types."""

    SANDBOX_CREATED = "sandbox_created"
    SANDBOX_CLEANED = "sandbox_cleaned"
    EXECUTION_STARTED = "execution_started"
    EXECUTION_ENDED = "execution_ended"
    VALIDATION_FAILED = "validation_failed"
    TIMEOUT_REACHED = "timeout_reached"


class SandboxEvent(BaseModel):
    """An event delivered to observers."""

    type: EventType
    sandbox_id: str
    timestamp: datetime = Field(default_factory=_utc_now)
    data: dict[str, str] = Field(default_factory=dict)
    error: str = ""


class SandboxStatus(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    CLEANED = "cleaned"


class SandboxInfo(BaseModel):
    """Caller-facing summary of a live worktree."""

    id: str
    path: str
    created_at: datetime
    last_used: datetime
    status: SandboxStatus = SandboxStatus.ACTIVE


class SandboxMetrics(BaseModel):
    """Aggregate usage counters kept by the manager."""

    total_sandboxes: int = 0
    active_sandboxes: int = 0
    total_executions: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    timeouts: int = 0
    average_exec_time: float = Field(default=0.0, description="Mean seconds per finished execution.")
    total_cleanups: int = 0
    last_cleanup_time: datetime | None = None
