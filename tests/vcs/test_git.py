"""Tests for the git-backed workspace provider."""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING

import pytest

from wtsandbox.errors import ProvisioningError
from wtsandbox.vcs import GitError, GitWorkspaceProvider, WorkspaceProvider

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def git_provider(git_repo: Path, tmp_path: Path) -> GitWorkspaceProvider:
    return GitWorkspaceProvider(git_repo, tmp_path / "worktrees")


def _worktree_list(repo: Path) -> str:
    return subprocess.run(
        ["git", "worktree", "list"], cwd=repo, check=True, capture_output=True, text=True
    ).stdout


class TestGitWorkspaceProvider:
    def test_satisfies_protocol(self, git_provider: GitWorkspaceProvider) -> None:
        assert isinstance(git_provider, WorkspaceProvider)

    def test_rejects_missing_repo(self, tmp_path: Path) -> None:
        with pytest.raises(ProvisioningError):
            GitWorkspaceProvider(tmp_path / "absent")

    async def test_create_checks_out_snapshot(
        self, git_provider: GitWorkspaceProvider, git_repo: Path
    ) -> None:
        path = await git_provider.create_worktree("HEAD")
        assert path.is_relative_to(git_provider.root)
        assert (path / "main.go").read_text() == (git_repo / "main.go").read_text()
        assert str(path) in _worktree_list(git_repo)

    async def test_bad_ref(self, git_provider: GitWorkspaceProvider) -> None:
        with pytest.raises(GitError) as exc_info:
            await git_provider.create_worktree("no-such-branch")
        assert exc_info.value.returncode != 0
        assert list(git_provider.root.iterdir()) == []

    async def test_diff_includes_new_and_modified_files(self, git_provider: GitWorkspaceProvider) -> None:
        path = await git_provider.create_worktree("HEAD")
        (path / "main.go").write_text("package main\n\nfunc main() { println(1) }\n")
        (path / "extra.txt").write_text("brand new\n")

        diff = await git_provider.get_diff(path)
        assert "main.go" in diff
        assert "+brand new" in diff

    async def test_commit_in_worktree_leaves_repo_untouched(
        self, git_provider: GitWorkspaceProvider, git_repo: Path
    ) -> None:
        path = await git_provider.create_worktree("HEAD")
        (path / "feature.txt").write_text("x\n")
        await git_provider.add(path, ["feature.txt"])
        assert "feature.txt" in await git_provider.get_staged_diff(path)
        await git_provider.commit(path, "add feature")

        assert await git_provider.get_status(path) == ""
        assert not (git_repo / "feature.txt").exists()

    async def test_remove(self, git_provider: GitWorkspaceProvider, git_repo: Path) -> None:
        path = await git_provider.create_worktree("HEAD")
        (path / "dirty.txt").write_text("uncommitted\n")
        await git_provider.remove_worktree(path)
        assert not path.exists()
        assert str(path) not in _worktree_list(git_repo)

    async def test_remove_already_deleted_directory(self, git_provider: GitWorkspaceProvider) -> None:
        path = await git_provider.create_worktree("HEAD")
        await git_provider.remove_worktree(path)
        await git_provider.remove_worktree(path)

    async def test_current_branch(self, git_provider: GitWorkspaceProvider) -> None:
        assert await git_provider.get_current_branch() in {"main", "master"}
