"""Worktree lifecycle — the registry of live isolated workspaces.

:class:`WorktreeManager` owns the registry; each :class:`Worktree` is a
handle giving confined file I/O, command execution, diff and commit inside
one workspace.  A worktree is owned by whoever provisioned it, so the handle
itself does no locking; only registry mutations are serialised.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import secrets
import signal
import string
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from wtsandbox.errors import (
    CommandTimeoutError,
    ExecutionError,
    InputError,
    NotFoundError,
    ProvisioningError,
)
from wtsandbox.models import ExecutionResult

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from wtsandbox.vcs.provider import WorkspaceProvider

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _utc_now() -> datetime:
    return datetime.now(UTC)


def generate_worktree_id(now: datetime | None = None) -> str:
    """``<unix seconds>-<8 random chars>``; the suffix comes from :mod:`secrets`."""
    stamp = int((now or _utc_now()).timestamp())
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))
    return f"{stamp}-{suffix}"


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the process group started for *proc*, or just *proc* if that fails."""
    if proc.returncode is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError, AttributeError):
        with contextlib.suppress(ProcessLookupError):
            proc.kill()


class Worktree:
    """One isolated workspace.

    Every operation refreshes :attr:`last_used`, whether it succeeds or not.
    While held (see :meth:`hold`) the worktree is never reaped, however long
    the current command runs.
    """

    def __init__(
        self,
        worktree_id: str,
        path: Path,
        branch: str,
        manager: WorktreeManager,
    ) -> None:
        self._id = worktree_id
        self._path = path.resolve()
        self._branch = branch
        self._manager = manager
        self._created_at = manager.now()
        self._last_used = self._created_at
        self._released = False
        self._holds = 0
        self._log = manager.log

    @property
    def id(self) -> str:
        return self._id

    @property
    def path(self) -> Path:
        return self._path

    @property
    def branch(self) -> str:
        return self._branch

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def last_used(self) -> datetime:
        return self._last_used

    def touch(self) -> None:
        """Refresh :attr:`last_used`; it never moves backwards."""
        self._last_used = max(self._last_used, self._manager.now())

    @property
    def in_use(self) -> bool:
        return self._holds > 0

    @contextlib.contextmanager
    def hold(self) -> Iterator[Worktree]:
        """Mark the worktree busy for the duration of the block."""
        self._holds += 1
        self.touch()
        try:
            yield self
        finally:
            self._holds -= 1
            self.touch()

    # ------------------------------------------------------------------
    # File access
    # ------------------------------------------------------------------

    def resolve(self, relative_path: str) -> Path:
        """Map *relative_path* into the worktree, refusing anything outside it."""
        candidate = Path(relative_path)
        if not relative_path or candidate.is_absolute() or candidate.drive:
            raise InputError("resolve", f"path must be relative to the worktree: {relative_path!r}")
        full = (self._path / candidate).resolve()
        if full == self._path or not full.is_relative_to(self._path):
            raise InputError("resolve", f"path escapes the worktree: {relative_path!r}")
        return full

    def write_file(self, relative_path: str, content: bytes) -> None:
        self.touch()
        full = self.resolve(relative_path)
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(content)
        except OSError as exc:
            raise InputError("write_file", f"failed to write {relative_path}", cause=exc) from exc
        self._log.debug("wrote %s in worktree %s (%d bytes)", relative_path, self._id, len(content))

    def read_file(self, relative_path: str) -> bytes:
        self.touch()
        full = self.resolve(relative_path)
        try:
            return full.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError("read_file", f"file not found: {relative_path}", cause=exc) from exc
        except OSError as exc:
            raise InputError("read_file", f"failed to read {relative_path}", cause=exc) from exc

    def delete_file(self, relative_path: str) -> bool:
        """Remove a file; returns ``False`` if it did not exist."""
        self.touch()
        full = self.resolve(relative_path)
        try:
            full.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise InputError("delete_file", f"failed to delete {relative_path}", cause=exc) from exc
        return True

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def execute(
        self,
        command: str,
        *args: str,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> ExecutionResult:
        """Run *command* with the worktree as working directory.

        Combined stdout/stderr and the exit code are captured; a non-zero
        exit is reported in the result, not raised.  Allow/deny gating is
        the caller's job.

        Raises:
            ExecutionError: If the command cannot be started.
            CommandTimeoutError: If *timeout* elapses; the command's whole
                process group is killed first.
        """
        with self.hold():
            return await self._run(command, *args, timeout=timeout, env=env)

    async def _run(
        self,
        command: str,
        *args: str,
        timeout: float | None,
        env: dict[str, str] | None,
    ) -> ExecutionResult:
        display = " ".join([command, *args])
        self._log.debug("executing in worktree %s: %s", self._id, display)

        merged_env = {**os.environ, **env} if env else None
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=str(self._path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=merged_env,
                start_new_session=True,
            )
        except OSError as exc:
            raise ExecutionError("execute", f"failed to start {display}", cause=exc) from exc

        try:
            output, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            _kill_process_group(proc)
            await proc.wait()
            raise CommandTimeoutError("execute", timeout or 0.0, command=display) from None
        except asyncio.CancelledError:
            _kill_process_group(proc)
            raise

        exit_code = proc.returncode if proc.returncode is not None else 1
        result = ExecutionResult(
            command=display,
            output=output.decode(errors="replace") if output else "",
            error=f"exit status {exit_code}" if exit_code != 0 else "",
            exit_code=exit_code,
            worktree_id=self._id,
            duration=time.monotonic() - started,
        )
        self._log.debug("worktree %s: %s exited %d", self._id, display, exit_code)
        return result

    # ------------------------------------------------------------------
    # Version control
    # ------------------------------------------------------------------

    async def get_changes(self) -> str:
        """Diff of the worktree against the snapshot it was created from."""
        with self.hold():
            return await self._manager.provider.get_diff(self._path)

    async def commit(self, message: str) -> None:
        """Stage everything and commit it inside the worktree."""
        with self.hold():
            await self._manager.provider.add(self._path, ["."])
            await self._manager.provider.commit(self._path, message)
        self._log.debug("committed in worktree %s: %s", self._id, message)

    async def cleanup(self) -> bool:
        """Release this worktree; returns ``False`` if it was already released."""
        self.touch()
        if self._released:
            return False
        try:
            await self._manager.cleanup_worktree(self._id)
        except NotFoundError:
            self._released = True
            return False
        self._released = True
        return True


class WorktreeManager:
    """Registry of live worktrees backed by a :class:`WorkspaceProvider`.

    Creation and cleanup are serialised by one :class:`asyncio.Lock`;
    lookups and listings are plain reads of the registry.
    """

    def __init__(
        self,
        provider: WorkspaceProvider,
        *,
        max_worktrees: int | None = None,
        now_fn: Callable[[], datetime] | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._provider = provider
        self._max_worktrees = max_worktrees
        self._now_fn = now_fn or _utc_now
        self._log = log or logger
        self._worktrees: dict[str, Worktree] = {}
        self._lock = asyncio.Lock()

    @property
    def provider(self) -> WorkspaceProvider:
        return self._provider

    @property
    def root(self) -> Path:
        return self._provider.root

    @property
    def log(self) -> logging.Logger:
        return self._log

    def now(self) -> datetime:
        return self._now_fn()

    def __len__(self) -> int:
        return len(self._worktrees)

    async def create_worktree(self, branch_ref: str = "HEAD") -> Worktree:
        """Provision and register a new worktree holding a snapshot of *branch_ref*.

        Raises:
            ProvisioningError: If capacity is exhausted or the provider fails.
        """
        async with self._lock:
            if self._max_worktrees is not None and len(self._worktrees) >= self._max_worktrees:
                raise ProvisioningError(
                    "create_worktree",
                    f"capacity exceeded: {len(self._worktrees)} worktrees (max: {self._max_worktrees})",
                )

            worktree_id = generate_worktree_id(self.now())
            while worktree_id in self._worktrees:
                worktree_id = generate_worktree_id(self.now())

            try:
                path = await self._provider.create_worktree(branch_ref)
            except ProvisioningError:
                raise
            except Exception as exc:
                raise ProvisioningError(
                    "create_worktree", f"failed to create worktree for {branch_ref}", cause=exc
                ) from exc

            if not path.resolve().is_relative_to(self.root.resolve()):
                await self._provider.remove_worktree(path)
                raise ProvisioningError(
                    "create_worktree", f"workspace {path} is outside managed root {self.root}"
                )

            worktree = Worktree(worktree_id, path, branch_ref, self)
            self._worktrees[worktree_id] = worktree

        self._log.info("created worktree %s at %s (ref=%s)", worktree_id, path, branch_ref)
        return worktree

    def get_worktree(self, worktree_id: str) -> Worktree:
        worktree = self._worktrees.get(worktree_id)
        if worktree is None:
            raise NotFoundError("get_worktree", f"worktree {worktree_id} not found")
        worktree.touch()
        return worktree

    def list_worktrees(self) -> list[Worktree]:
        """Point-in-time snapshot of registered worktrees."""
        return list(self._worktrees.values())

    async def cleanup_worktree(self, worktree_id: str) -> None:
        """Destroy a worktree and drop it from the registry.

        Raises:
            NotFoundError: If *worktree_id* is not registered.
            ProvisioningError: If the backing directory cannot be removed
                (the entry stays registered so a later sweep can retry).
        """
        async with self._lock:
            await self._remove_locked(worktree_id)

    async def cleanup_old_worktrees(self, max_age: float) -> int:
        """Reap worktrees idle for more than *max_age* seconds.

        Staleness is judged against each worktree's ``last_used`` at the
        moment it is examined; worktrees currently held are skipped.
        Failures are logged and the sweep goes on.
        Returns the number of worktrees removed.
        """
        limit = timedelta(seconds=max_age)
        reaped = 0
        for worktree_id in list(self._worktrees):
            async with self._lock:
                worktree = self._worktrees.get(worktree_id)
                if worktree is None or worktree.in_use:
                    continue
                if self.now() - worktree.last_used <= limit:
                    continue
                try:
                    await self._remove_locked(worktree_id)
                except ProvisioningError as exc:
                    self._log.warning("failed to reap worktree %s: %s", worktree_id, exc)
                    continue
            reaped += 1

        if reaped:
            self._log.info("reaped %d idle worktree(s)", reaped)
        return reaped

    async def cleanup_all(self) -> int:
        """Release every registered worktree, logging individual failures."""
        released = 0
        for worktree in self.list_worktrees():
            try:
                if await worktree.cleanup():
                    released += 1
            except ProvisioningError as exc:
                self._log.warning("failed to clean up worktree %s: %s", worktree.id, exc)
        return released

    async def _remove_locked(self, worktree_id: str) -> None:
        worktree = self._worktrees.get(worktree_id)
        if worktree is None:
            raise NotFoundError("cleanup_worktree", f"worktree {worktree_id} not found")

        self._log.debug("cleaning up worktree %s at %s", worktree_id, worktree.path)
        try:
            await self._provider.remove_worktree(worktree.path)
        except ProvisioningError:
            raise
        except Exception as exc:
            raise ProvisioningError(
                "cleanup_worktree", f"failed to remove worktree {worktree_id}", cause=exc
            ) from exc

        del self._worktrees[worktree_id]
        self._log.info("cleaned up worktree %s", worktree_id)
