"""Workspace providers — the version-control primitives behind a worktree."""

from wtsandbox.vcs.git import GitError, GitWorkspaceProvider
from wtsandbox.vcs.provider import WorkspaceProvider

__all__ = [
    "GitError",
    "GitWorkspaceProvider",
    "WorkspaceProvider",
]
