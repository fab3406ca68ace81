"""Shared error types for the sandbox engine.

Every error carries the failing operation name and, where one exists, the
underlying cause.  Errors raised out of
:meth:`~wtsandbox.executor.Executor.execute_code` additionally carry the
best-effort :class:`~wtsandbox.models.ExecutionResponse` built so far.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wtsandbox.models import ExecutionResponse


class SandboxError(Exception):
    """Base error for all sandbox engine failures."""

    kind = "SANDBOX"

    def __init__(
        self,
        op: str,
        message: str = "",
        *,
        cause: BaseException | None = None,
    ) -> None:
        self.op = op
        self.message = message
        self.cause = cause
        self.response: ExecutionResponse | None = None
        super().__init__(self._render())

    def _render(self) -> str:
        text = f"[{self.kind}] {self.op}"
        if self.message:
            text += f": {self.message}"
        if self.cause is not None:
            text += f" - {self.cause}"
        return text

    def with_response(self, response: ExecutionResponse | None) -> SandboxError:
        """Attach *response* and return *self* for ``raise ... from`` chaining."""
        self.response = response
        return self


class ConfigError(SandboxError):
    """A configuration document could not be read or is invalid."""

    kind = "CONFIG"


class InputError(SandboxError):
    """The request is malformed (unknown operation, bad path, missing field)."""

    kind = "INPUT"


class NotFoundError(InputError):
    """A worktree or file does not exist."""


class ValidationError(SandboxError):
    """A proposed change set violates a rule."""

    kind = "VALIDATION"

    def __init__(
        self,
        op: str,
        message: str = "",
        *,
        rule: str = "",
        path: str = "",
        cause: BaseException | None = None,
    ) -> None:
        self.rule = rule
        self.path = path
        super().__init__(op, message, cause=cause)


class CommandDeniedError(ValidationError):
    """A validation step names a command that is not allow-listed or is deny-listed."""

    def __init__(self, op: str, command: str) -> None:
        self.command = command
        super().__init__(op, f"command not allowed: {command}", rule="command_gate")


class ProvisioningError(SandboxError):
    """A workspace could not be created or removed (including capacity limits)."""

    kind = "PROVISIONING"


class ExecutionError(SandboxError):
    """A command could not be spawned or a required step failed."""

    kind = "EXECUTION"


class CommandTimeoutError(ExecutionError):
    """Execution exceeded the configured deadline."""

    def __init__(self, op: str, timeout: float, *, command: str = "") -> None:
        self.timeout = timeout
        self.command = command
        detail = f"execution timed out after {timeout}s"
        if command:
            detail += f" while running {command}"
        super().__init__(op, detail)


class InternalError(SandboxError):
    """An unexpected or unclassified failure."""

    kind = "INTERNAL"
