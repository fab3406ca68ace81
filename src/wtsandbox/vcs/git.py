"""GitWorkspaceProvider — workspaces as detached ``git worktree`` checkouts.

Uses the ``git`` CLI via asyncio subprocesses (no GitPython dependency).
Every workspace is created with ``--detach`` so no sandbox branches are left
behind in the source repository.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path

from wtsandbox.errors import ProvisioningError

logger = logging.getLogger(__name__)

_FALLBACK_IDENTITY = ("-c", "user.name=wtsandbox", "-c", "user.email=wtsandbox@localhost")


class GitError(ProvisioningError):
    """A git command exited non-zero."""

    def __init__(self, args: list[str], returncode: int, output: str) -> None:
        self.args_list = args
        self.returncode = returncode
        self.output = output
        super().__init__(f"git {' '.join(args)}", f"exit {returncode}: {output.strip()}")


class GitWorkspaceProvider:
    """Workspace provider backed by ``git worktree``.

    Satisfies the :class:`~wtsandbox.vcs.provider.WorkspaceProvider` protocol.

    Workspaces are created as fresh temporary directories under *root*
    (default: ``<system tmp>/wtsandbox``).
    """

    def __init__(
        self,
        repo_root: str | Path,
        root: str | Path | None = None,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        resolved = Path(repo_root).expanduser().resolve()
        if not resolved.is_dir():
            raise ProvisioningError("GitWorkspaceProvider", f"{resolved} is not a directory")
        self._repo_root = resolved
        if root is None or str(root) == "":
            root = Path(tempfile.gettempdir()) / "wtsandbox"
        self._root = Path(root).expanduser().resolve()
        self._log = log or logger
        self._identity: tuple[str, ...] | None = None

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    @property
    def root(self) -> Path:
        return self._root

    async def create_worktree(self, ref: str) -> Path:
        """Check out *ref* (detached) into a new directory under :attr:`root`."""
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            path = Path(tempfile.mkdtemp(prefix="wt-", dir=self._root))
        except OSError as exc:
            raise ProvisioningError(
                "create_worktree", f"cannot allocate directory under {self._root}", cause=exc
            ) from exc

        try:
            await self._run_git(["worktree", "add", "--detach", "--quiet", str(path), ref])
        except ProvisioningError:
            shutil.rmtree(path, ignore_errors=True)
            raise
        self._log.debug("git worktree added at %s (ref=%s)", path, ref)
        return path

    async def remove_worktree(self, path: Path) -> None:
        """Remove the worktree at *path*; an already-missing directory is fine."""
        try:
            await self._run_git(["worktree", "remove", "--force", str(path)])
        except ProvisioningError as exc:
            self._log.debug("git worktree remove failed for %s, removing directory: %s", path, exc)
            try:
                shutil.rmtree(path)
            except FileNotFoundError:
                pass
            except OSError as rm_exc:
                raise ProvisioningError(
                    "remove_worktree", f"failed to remove {path}", cause=rm_exc
                ) from rm_exc
            await self._run_git(["worktree", "prune"], check=False)

    async def get_diff(self, path: Path) -> str:
        """Diff against ``HEAD`` including untracked files (added intent-to-add)."""
        await self._run_git(["add", "--intent-to-add", "."], cwd=path)
        return await self._run_git(["diff", "HEAD"], cwd=path)

    async def get_staged_diff(self, path: Path) -> str:
        return await self._run_git(["diff", "--cached"], cwd=path)

    async def add(self, path: Path, files: list[str]) -> None:
        await self._run_git(["add", "--", *files], cwd=path)

    async def commit(self, path: Path, message: str) -> None:
        identity = await self._identity_args()
        await self._run_git([*identity, "commit", "--quiet", "-m", message], cwd=path)

    async def get_current_branch(self) -> str:
        return (await self._run_git(["rev-parse", "--abbrev-ref", "HEAD"])).strip()

    async def get_status(self, path: Path) -> str:
        return await self._run_git(["status", "--porcelain"], cwd=path)

    async def _identity_args(self) -> tuple[str, ...]:
        """Fallback committer identity when the user has none configured."""
        if self._identity is None:
            configured = await self._run_git(["config", "user.email"], check=False)
            self._identity = () if configured.strip() else _FALLBACK_IDENTITY
        return self._identity

    async def _run_git(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
    ) -> str:
        """Run a git command and return its stdout."""
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=str(cwd or self._repo_root),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout_bytes, stderr_bytes = await proc.communicate()
        except OSError as exc:
            raise ProvisioningError(f"git {' '.join(args)}", "failed to run git", cause=exc) from exc

        stdout = stdout_bytes.decode(errors="replace") if stdout_bytes else ""
        stderr = stderr_bytes.decode(errors="replace") if stderr_bytes else ""

        if proc.returncode != 0 and check:
            raise GitError(args, proc.returncode or 1, stderr or stdout)
        return stdout
