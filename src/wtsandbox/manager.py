"""SandboxManager — the caller-facing facade over executor, validator and events.

Adds metrics and lifecycle events on top of :class:`~wtsandbox.executor.Executor`
and hands out :class:`SandboxHandle` objects for manual work in a worktree.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from wtsandbox.config import ExecutorConfig, ProjectConfiguration, resolve_project_config
from wtsandbox.errors import CommandDeniedError, SandboxError
from wtsandbox.events import EventManager, Observer
from wtsandbox.executor import Executor
from wtsandbox.models import (
    EventType,
    ExecutionRequest,
    ExecutionResponse,
    ExecutionResult,
    ExecutionStatus,
    SandboxEvent,
    SandboxInfo,
    SandboxMetrics,
    SandboxStatus,
    ValidationStep,
)
from wtsandbox.validator import ContentRule, FileRule, Validator

if TYPE_CHECKING:
    from types import TracebackType

    from wtsandbox.worktree import Worktree

logger = logging.getLogger(__name__)


class SandboxHandle:
    """A worktree checked out for manual use.

    Call :meth:`cleanup` when done; the manager's ``cleanup`` releases any
    handle still open.
    """

    def __init__(self, worktree: Worktree, manager: SandboxManager) -> None:
        self._worktree = worktree
        self._manager = manager

    @property
    def id(self) -> str:
        return self._worktree.id

    @property
    def path(self) -> Path:
        return self._worktree.path

    def write_file(self, path: str, content: bytes | str) -> None:
        if isinstance(content, str):
            content = content.encode("utf-8")
        self._worktree.write_file(path, content)

    def read_file(self, path: str) -> bytes:
        return self._worktree.read_file(path)

    def delete_file(self, path: str) -> bool:
        return self._worktree.delete_file(path)

    async def execute(self, command: str, *args: str, timeout: float | None = None) -> ExecutionResult:
        """Run *command* in the sandbox, gated like a validation step.

        Raises:
            CommandDeniedError: If the executor's command gate rejects it.
        """
        return await self._manager._execute_in(self._worktree, command, *args, timeout=timeout)

    async def get_changes(self) -> str:
        return await self._worktree.get_changes()

    async def commit(self, message: str) -> None:
        await self._worktree.commit(message)

    async def cleanup(self) -> bool:
        """Release the sandbox; returns ``False`` if it was already gone.

        A sandbox the reaper removed first still counts as released here.
        """
        released = await self._worktree.cleanup()
        self._manager._sandbox_released(self._worktree.id)
        return released

    async def __aenter__(self) -> SandboxHandle:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.cleanup()

    def __repr__(self) -> str:
        return f"SandboxHandle(id={self.id!r}, path={str(self.path)!r})"


class SandboxManager:
    """Metrics- and event-instrumented entry point to the sandbox engine.

    Usage::

        async with SandboxManager.from_repo(".") as manager:
            response = await manager.execute_code(request)
    """

    def __init__(
        self,
        executor: Executor,
        project: ProjectConfiguration | None = None,
        *,
        events: EventManager | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._executor = executor
        self._project = project or ProjectConfiguration()
        self._log = log or logger
        self._events = events or EventManager(log=self._log)
        self._metrics = SandboxMetrics()
        self._open_sandboxes: set[str] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_repo(
        cls,
        repo_root: str | Path,
        *,
        project: ProjectConfiguration | None = None,
        config: ExecutorConfig | None = None,
        rules_path: str | Path | None = None,
        log: logging.Logger | None = None,
    ) -> SandboxManager:
        """Build a manager for the git repository at *repo_root*.

        The project configuration is read from ``.wtsandbox/project.yml`` or
        detected from marker files; it seeds the executor configuration
        (unless *config* is given) and locates the rules document.

        Raises:
            SandboxError: If the executor cannot be constructed.
        """
        root = Path(repo_root)
        project = project or resolve_project_config(root, log)
        config = config or project.executor_config()
        if rules_path is None:
            rules_path = root / project.validation.rules_file

        validator = Validator(rules_path=rules_path, log=log)
        executor = Executor.from_repo(root, config, validator=validator, log=log)
        manager = cls(executor, project, log=log)
        manager._log.info(
            "initialized sandbox manager (language=%s, framework=%s)",
            project.language or "-",
            project.framework or "-",
        )
        return manager

    @property
    def executor(self) -> Executor:
        return self._executor

    @property
    def events(self) -> EventManager:
        return self._events

    async def __aenter__(self) -> SandboxManager:
        await self._executor.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.cleanup()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_code(self, request: ExecutionRequest) -> ExecutionResponse:
        """Run *request* through the executor, recording metrics and events.

        Errors from the executor are re-raised unchanged after the
        ``validation_failed`` (and, for timeouts, ``timeout_reached``)
        events have been emitted.
        """
        with self._lock:
            self._metrics.total_executions += 1

        self._emit(
            EventType.EXECUTION_STARTED,
            request.id,
            data={"type": request.type, "file_count": str(len(request.files))},
        )

        try:
            response = await self._executor.execute_code(request)
        except SandboxError as exc:
            timed_out = exc.response is not None and exc.response.status is ExecutionStatus.TIMEOUT
            self._record_run(exc.response, success=False, timed_out=timed_out)
            data = _response_data(exc.response)
            self._emit(EventType.VALIDATION_FAILED, request.id, data=data, error=str(exc))
            if timed_out:
                self._emit(EventType.TIMEOUT_REACHED, request.id, data=data, error=str(exc))
            raise

        self._record_run(response, success=response.success, timed_out=False)
        self._emit(EventType.EXECUTION_ENDED, request.id, data=_response_data(response))
        return response

    def default_validation_steps(self) -> list[ValidationStep]:
        return self._project.default_validation_steps()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_code(self, path: str, content: str) -> None:
        """Check a single file against the rules without running anything.

        Raises:
            ValidationError: On the first violated rule.
        """
        self._executor.validator.validate_code(path, content)

    def get_validation_rules(self, path: str) -> tuple[list[FileRule], list[ContentRule]]:
        return self._executor.validator.get_rules_for_path(path)

    # ------------------------------------------------------------------
    # Sandboxes
    # ------------------------------------------------------------------

    async def create_sandbox(self, ref: str = "HEAD") -> SandboxHandle:
        """Provision a worktree for manual operations.

        Raises:
            ProvisioningError: If capacity is exhausted or the checkout fails.
        """
        worktree = await self._executor.worktree_manager.create_worktree(ref)
        with self._lock:
            self._open_sandboxes.add(worktree.id)
            self._metrics.total_sandboxes += 1
            self._metrics.active_sandboxes += 1
        self._emit(EventType.SANDBOX_CREATED, worktree.id, data={"path": str(worktree.path)})
        return SandboxHandle(worktree, self)

    def list_sandboxes(self) -> list[SandboxInfo]:
        """Live worktrees; those unused for a full cleanup interval are ``idle``."""
        manager = self._executor.worktree_manager
        idle_after = timedelta(seconds=self._executor.config.cleanup_interval)
        now = manager.now()
        return [
            SandboxInfo(
                id=wt.id,
                path=str(wt.path),
                created_at=wt.created_at,
                last_used=wt.last_used,
                status=SandboxStatus.IDLE if now - wt.last_used > idle_after else SandboxStatus.ACTIVE,
            )
            for wt in manager.list_worktrees()
        ]

    async def cleanup(self) -> None:
        """Stop the reaper and release every worktree."""
        self._log.info("cleaning up sandbox manager")
        manager = self._executor.worktree_manager
        before = {wt.id for wt in manager.list_worktrees()}

        await self._executor.close()

        remaining = {wt.id for wt in manager.list_worktrees()}
        for worktree_id in sorted(before - remaining):
            self._emit(EventType.SANDBOX_CLEANED, worktree_id)

        with self._lock:
            self._metrics.total_cleanups += 1
            self._metrics.last_cleanup_time = manager.now()
            self._metrics.active_sandboxes = 0
            self._open_sandboxes.clear()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_metrics(self) -> SandboxMetrics:
        """A snapshot of the counters; later activity does not change it."""
        with self._lock:
            return self._metrics.model_copy()

    def get_config(self) -> ProjectConfiguration:
        return self._project

    def add_event_observer(self, observer: Observer) -> None:
        self._events.add_observer(observer)

    def remove_event_observer(self, observer: Observer) -> bool:
        return self._events.remove_observer(observer)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _execute_in(
        self,
        worktree: Worktree,
        command: str,
        *args: str,
        timeout: float | None = None,
    ) -> ExecutionResult:
        if not self._executor.is_command_allowed(command):
            raise CommandDeniedError("execute", command)
        return await worktree.execute(
            command,
            *args,
            timeout=timeout if timeout is not None else self._executor.config.timeout,
            env=self._executor.config.environment or None,
        )

    def _sandbox_released(self, worktree_id: str) -> None:
        """Account for a handle's release once, however its worktree went away."""
        with self._lock:
            if worktree_id not in self._open_sandboxes:
                return
            self._open_sandboxes.discard(worktree_id)
            self._metrics.active_sandboxes = max(0, self._metrics.active_sandboxes - 1)
        self._emit(EventType.SANDBOX_CLEANED, worktree_id)

    def _record_run(
        self,
        response: ExecutionResponse | None,
        *,
        success: bool,
        timed_out: bool,
    ) -> None:
        with self._lock:
            m = self._metrics
            if success:
                m.successful_runs += 1
            else:
                m.failed_runs += 1
            if timed_out:
                m.timeouts += 1
            if response is not None:
                finished = m.successful_runs + m.failed_runs
                m.average_exec_time += (response.duration - m.average_exec_time) / finished

    def _emit(
        self,
        event_type: EventType,
        sandbox_id: str,
        *,
        data: dict[str, str] | None = None,
        error: str = "",
    ) -> None:
        self._events.emit(
            SandboxEvent(type=event_type, sandbox_id=sandbox_id, data=data or {}, error=error)
        )


def _response_data(response: ExecutionResponse | None) -> dict[str, str]:
    if response is None:
        return {}
    return {
        "status": response.status.value,
        "duration": f"{response.duration:.3f}s",
        "worktree_id": response.worktree_id,
    }
