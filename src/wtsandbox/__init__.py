"""wtsandbox — verify proposed code changes in disposable git worktrees."""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from wtsandbox.executor import Executor as Executor
    from wtsandbox.manager import SandboxManager as SandboxManager
    from wtsandbox.models import ExecutionRequest as ExecutionRequest
    from wtsandbox.models import ExecutionResponse as ExecutionResponse
    from wtsandbox.validator import Validator as Validator

_EXPORTS = {
    "Executor": "wtsandbox.executor",
    "SandboxManager": "wtsandbox.manager",
    "ExecutionRequest": "wtsandbox.models",
    "ExecutionResponse": "wtsandbox.models",
    "Validator": "wtsandbox.validator",
}


def __getattr__(name: str) -> object:
    module_path = _EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'wtsandbox' has no attribute {name!r}")
