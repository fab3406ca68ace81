"""Shared fixtures: an in-memory workspace provider and a throwaway git repository."""

from __future__ import annotations

import shutil
import subprocess
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from wtsandbox.config import ExecutorConfig
from wtsandbox.errors import ProvisioningError
from wtsandbox.executor import Executor
from wtsandbox.validator import Validator, default_rules
from wtsandbox.worktree import WorktreeManager

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

TEST_COMMANDS = ["sh", "echo", "cat", "ls", "true", "false", "sleep", "test"]


class FakeProvider:
    """Directory-backed provider; every workspace starts with a ``README.md``."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self.created: list[Path] = []
        self.removed: list[Path] = []
        self.fail_create = False
        self.fail_remove = False
        self.commits: list[tuple[Path, str]] = []

    @property
    def root(self) -> Path:
        return self._root

    async def create_worktree(self, ref: str) -> Path:
        if self.fail_create:
            raise ProvisioningError("create_worktree", "provider down")
        self._root.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix="wt-", dir=self._root))
        (path / "README.md").write_text(f"snapshot of {ref}\n")
        self.created.append(path)
        return path

    async def remove_worktree(self, path: Path) -> None:
        if self.fail_remove:
            raise OSError("device busy")
        shutil.rmtree(path, ignore_errors=True)
        self.removed.append(path)

    async def get_diff(self, path: Path) -> str:
        names = sorted(p.relative_to(path).as_posix() for p in path.rglob("*") if p.is_file())
        return "".join(f"+++ {name}\n" for name in names if name != "README.md")

    async def get_staged_diff(self, path: Path) -> str:
        return ""

    async def add(self, path: Path, files: list[str]) -> None:
        return None

    async def commit(self, path: Path, message: str) -> None:
        self.commits.append((path, message))

    async def get_current_branch(self) -> str:
        return "main"

    async def get_status(self, path: Path) -> str:
        return ""


class FakeClock:
    """Settable clock for ``now_fn``."""

    def __init__(self) -> None:
        self.current = datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def provider(tmp_path: Path) -> FakeProvider:
    return FakeProvider(tmp_path / "worktrees")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def worktree_manager(provider: FakeProvider) -> WorktreeManager:
    return WorktreeManager(provider, max_worktrees=5)


@pytest.fixture
def executor_config() -> ExecutorConfig:
    return ExecutorConfig(timeout=10.0, allowed_commands=TEST_COMMANDS)


@pytest.fixture
async def executor(
    worktree_manager: WorktreeManager, executor_config: ExecutorConfig
) -> AsyncIterator[Executor]:
    executor = Executor(worktree_manager, Validator(default_rules()), executor_config)
    yield executor
    await executor.stop()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A git repository with one commit containing ``README.md`` and ``main.go``."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    repo = tmp_path / "repo"
    repo.mkdir()

    def git(*args: str) -> None:
        subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True)

    git("init", "--quiet")
    git("config", "user.email", "dev@example.com")
    git("config", "user.name", "Dev")
    git("config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("# demo\n")
    (repo / "main.go").write_text("package main\n\nfunc main() {}\n")
    git("add", ".")
    git("commit", "--quiet", "-m", "initial")
    return repo
