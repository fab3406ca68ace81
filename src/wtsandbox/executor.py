"""Executor — runs one execution request end-to-end in a fresh worktree.

Stages: validate → provision → apply → run steps → finalize.  Whatever stage
fails, the response reaches a terminal status, the error carries the
response, and the worktree is released.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import PurePath
from typing import TYPE_CHECKING

from wtsandbox.config import ExecutorConfig
from wtsandbox.errors import (
    CommandDeniedError,
    CommandTimeoutError,
    ExecutionError,
    InputError,
    InternalError,
    SandboxError,
)
from wtsandbox.models import (
    ExecutionRequest,
    ExecutionResponse,
    ExecutionResult,
    ExecutionStatus,
    FileOperation,
    ValidationStep,
)
from wtsandbox.telemetry import (
    record_response,
    record_result,
    request_attributes,
    span,
    step_attributes,
)
from wtsandbox.validator import Validator
from wtsandbox.vcs.git import GitWorkspaceProvider
from wtsandbox.worktree import Worktree, WorktreeManager

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

logger = logging.getLogger(__name__)


class Executor:
    """Safe execution of change sets in isolated worktrees.

    Owns a background reaper that, every ``cleanup_interval`` seconds,
    removes worktrees idle for more than twice that interval.  The reaper is
    started by :meth:`start` (or lazily by the first :meth:`execute_code`)
    and stopped by :meth:`stop` / :meth:`close`.
    """

    def __init__(
        self,
        worktrees: WorktreeManager,
        validator: Validator,
        config: ExecutorConfig | None = None,
        *,
        base_ref: str = "HEAD",
        log: logging.Logger | None = None,
    ) -> None:
        self._worktrees = worktrees
        self._validator = validator
        self._config = config or ExecutorConfig()
        self._base_ref = base_ref
        self._log = log or logger
        self._reaper: asyncio.Task[None] | None = None

    @classmethod
    def from_repo(
        cls,
        repo_root: str | Path,
        config: ExecutorConfig | None = None,
        *,
        validator: Validator | None = None,
        log: logging.Logger | None = None,
    ) -> Executor:
        """Build an executor over a git repository at *repo_root*."""
        config = config or ExecutorConfig()
        provider = GitWorkspaceProvider(repo_root, config.working_dir or None, log=log)
        worktrees = WorktreeManager(provider, max_worktrees=config.max_worktrees, log=log)
        executor = cls(worktrees, validator or Validator(log=log), config, log=log)
        executor._log.info(
            "initialized sandbox executor (timeout=%ss, max_worktrees=%d)",
            config.timeout,
            config.max_worktrees,
        )
        return executor

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    @property
    def worktree_manager(self) -> WorktreeManager:
        return self._worktrees

    @property
    def validator(self) -> Validator:
        return self._validator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background reaper (idempotent)."""
        self._ensure_reaper()

    async def stop(self) -> None:
        """Cancel the background reaper."""
        if self._reaper is None:
            return
        self._reaper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._reaper
        self._reaper = None

    async def close(self) -> None:
        """Stop the reaper and release every worktree."""
        self._log.info("cleaning up sandbox executor")
        await self.stop()
        await self._worktrees.cleanup_all()

    async def __aenter__(self) -> Executor:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def get_worktrees(self) -> list[Worktree]:
        return self._worktrees.list_worktrees()

    def _ensure_reaper(self) -> None:
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.get_running_loop().create_task(
                self._reap_forever(), name="wtsandbox-reaper"
            )

    async def _reap_forever(self) -> None:
        interval = self._config.cleanup_interval
        while True:
            await asyncio.sleep(interval)
            self._log.debug("running worktree cleanup")
            try:
                await self._worktrees.cleanup_old_worktrees(interval * 2)
            except Exception:
                self._log.exception("worktree cleanup sweep failed")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_code(self, request: ExecutionRequest) -> ExecutionResponse:
        """Validate, apply and verify *request* in a fresh worktree.

        Returns the completed response.  On failure raises a
        :class:`~wtsandbox.errors.SandboxError` whose ``response`` holds the
        terminal (``failed`` or ``timeout``) response with any partial
        results.
        """
        self._ensure_reaper()
        self._log.debug(
            "executing request %s (type=%s, files=%d)", request.id, request.type, len(request.files)
        )

        with span("execute", request_attributes(request)) as current:
            response = ExecutionResponse(request_id=request.id)
            response.mark_running()

            try:
                self._validator.validate_request(request)
                worktree = await self._worktrees.create_worktree(self._base_ref)
            except SandboxError as exc:
                response.finish(ExecutionStatus.FAILED, str(exc))
                record_response(current, response)
                raise exc.with_response(response) from exc.cause

            response.worktree_id = worktree.id

            try:
                with worktree.hold():
                    self.apply_changes(worktree, request)
                    await self.execute_validation(worktree, request, response)
            except CommandTimeoutError as exc:
                response.finish(ExecutionStatus.TIMEOUT, str(exc))
                raise exc.with_response(response) from exc.cause
            except SandboxError as exc:
                response.finish(ExecutionStatus.FAILED, str(exc))
                raise exc.with_response(response) from exc.cause
            except Exception as exc:
                error = InternalError("execute_code", "unexpected failure", cause=exc)
                response.finish(ExecutionStatus.FAILED, str(error))
                raise error.with_response(response) from exc
            else:
                response.finish(ExecutionStatus.COMPLETED)
            finally:
                await self._release(worktree)
                record_response(current, response)

        self._log.info(
            "sandbox execution completed: request %s in %.2fs", request.id, response.duration
        )
        return response

    def apply_changes(self, worktree: Worktree, request: ExecutionRequest) -> None:
        """Write, update or delete each file of *request* inside *worktree*.

        Raises:
            InputError: On an unknown operation or a path outside the worktree.
        """
        for change in request.files:
            try:
                operation = FileOperation(change.operation)
            except ValueError:
                raise InputError(
                    "apply_changes", f"unknown file operation: {change.operation} ({change.path})"
                ) from None

            self._log.debug("applying %s to %s", operation.value, change.path)
            if operation is FileOperation.DELETE:
                if not worktree.delete_file(change.path):
                    self._log.debug("%s already absent", change.path)
            else:
                worktree.write_file(change.path, change.content.encode("utf-8"))

    async def execute_validation(
        self,
        worktree: Worktree,
        request: ExecutionRequest,
        response: ExecutionResponse,
    ) -> None:
        """Run the validation steps in order under one deadline.

        Each step's result is appended to ``response.results`` whatever its
        exit code.  On success the final diff is stored in ``response.diff``.

        Raises:
            CommandDeniedError: A step's command is not permitted.
            ExecutionError: A required step exited non-zero.
            CommandTimeoutError: The deadline passed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.timeout

        for step in request.validation_steps:
            if not self.is_command_allowed(step.command):
                raise CommandDeniedError("execute_validation", step.command)

            result = await self.execute_command(worktree, step, deadline)
            response.results.append(result)

            if result.timed_out:
                raise CommandTimeoutError(
                    "execute_validation", self._config.timeout, command=step.display
                )

            if not result.success and step.required:
                raise ExecutionError(
                    "execute_validation",
                    f"required validation step failed: {step.name or step.display} "
                    f"(exit {result.exit_code})",
                )

            if loop.time() >= deadline:
                raise CommandTimeoutError("execute_validation", self._config.timeout)

        try:
            response.diff = await worktree.get_changes()
        except SandboxError as exc:
            self._log.warning("failed to get final diff for %s: %s", worktree.id, exc)

    async def execute_command(
        self,
        worktree: Worktree,
        step: ValidationStep,
        deadline: float,
    ) -> ExecutionResult:
        """Run *step* with whatever budget remains before *deadline*.

        A step that outlives the budget is killed (process group included)
        and reported as a result with ``timed_out=True``.

        Raises:
            ExecutionError: If the command cannot be spawned.
        """
        remaining = deadline - asyncio.get_running_loop().time()
        with span("step", step_attributes(step, worktree.id)) as current:
            if remaining <= 0:
                result = self._timed_out_result(worktree, step, "deadline already passed")
                record_result(current, result)
                return result

            try:
                result = await worktree.execute(
                    step.command,
                    *step.args,
                    timeout=remaining,
                    env=self._config.environment or None,
                )
            except CommandTimeoutError as exc:
                self._log.warning("step %s timed out in worktree %s", step.display, worktree.id)
                result = self._timed_out_result(worktree, step, str(exc))

            record_result(current, result)
            return result

    def is_command_allowed(self, command: str) -> bool:
        """Deny-by-default gate; the deny-list wins over the allow-list.

        The deny-list is checked against both the command and its basename,
        so ``/bin/rm`` is as blocked as ``rm``.
        """
        basename = PurePath(command).name
        blocked = self._config.blocked_commands
        if command in blocked or basename in blocked:
            return False
        return command in self._config.allowed_commands

    @staticmethod
    def _timed_out_result(worktree: Worktree, step: ValidationStep, detail: str) -> ExecutionResult:
        return ExecutionResult(
            command=step.display,
            error=detail,
            exit_code=-1,
            worktree_id=worktree.id,
            timed_out=True,
        )

    async def _release(self, worktree: Worktree) -> None:
        try:
            await worktree.cleanup()
        except SandboxError as exc:
            self._log.warning("failed to clean up worktree %s: %s", worktree.id, exc)
