"""WorkspaceProvider protocol — the version-control primitives the engine consumes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path


@runtime_checkable
class WorkspaceProvider(Protocol):
    """Creates isolated snapshot directories and exposes diff/commit primitives.

    Any snapshotting mechanism satisfying this protocol can back a
    :class:`~wtsandbox.worktree.WorktreeManager`.  ``path`` arguments name a
    workspace previously returned by :meth:`create_worktree`.
    """

    @property
    def root(self) -> Path:
        """The managed directory every workspace is created under."""
        ...

    async def create_worktree(self, ref: str) -> Path:
        """Create a new workspace holding a snapshot of *ref* and return its path."""
        ...

    async def remove_worktree(self, path: Path) -> None:
        """Destroy the workspace at *path*."""
        ...

    async def get_diff(self, path: Path) -> str:
        """Diff of the workspace against its base snapshot, new files included."""
        ...

    async def get_staged_diff(self, path: Path) -> str:
        """Diff of staged changes only."""
        ...

    async def add(self, path: Path, files: list[str]) -> None:
        """Stage *files* (relative to *path*)."""
        ...

    async def commit(self, path: Path, message: str) -> None:
        """Commit the staged changes."""
        ...

    async def get_current_branch(self) -> str:
        """Branch currently checked out in the source repository."""
        ...

    async def get_status(self, path: Path) -> str:
        """Short status listing of the workspace."""
        ...
