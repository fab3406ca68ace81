"""Tests for the sandbox error taxonomy."""

from wtsandbox.errors import (
    CommandDeniedError,
    CommandTimeoutError,
    ConfigError,
    ExecutionError,
    InputError,
    InternalError,
    NotFoundError,
    ProvisioningError,
    SandboxError,
    ValidationError,
)
from wtsandbox.models import ExecutionResponse


class TestErrorHierarchy:
    def test_all_kinds_are_sandbox_errors(self) -> None:
        for cls in (
            ConfigError,
            InputError,
            NotFoundError,
            ValidationError,
            CommandDeniedError,
            ProvisioningError,
            ExecutionError,
            CommandTimeoutError,
            InternalError,
        ):
            assert issubclass(cls, SandboxError)

    def test_not_found_is_input_error(self) -> None:
        assert issubclass(NotFoundError, InputError)
        assert NotFoundError("get").kind == "INPUT"

    def test_command_denied_is_validation_error(self) -> None:
        assert issubclass(CommandDeniedError, ValidationError)

    def test_timeout_is_execution_error(self) -> None:
        assert issubclass(CommandTimeoutError, ExecutionError)


class TestSandboxError:
    def test_render_with_message_and_cause(self) -> None:
        err = ProvisioningError("create_worktree", "disk full", cause=OSError("ENOSPC"))
        assert str(err) == "[PROVISIONING] create_worktree: disk full - ENOSPC"
        assert err.op == "create_worktree"
        assert isinstance(err.cause, OSError)

    def test_render_without_message(self) -> None:
        assert str(InternalError("finish")) == "[INTERNAL] finish"

    def test_with_response_returns_self(self) -> None:
        response = ExecutionResponse(request_id="r1")
        err = ExecutionError("execute_validation", "boom")
        assert err.response is None
        assert err.with_response(response) is err
        assert err.response is response


class TestValidationError:
    def test_rule_and_path(self) -> None:
        err = ValidationError("validate_file", "blocked", rule="No credentials", path="a.go")
        assert err.rule == "No credentials"
        assert err.path == "a.go"
        assert str(err).startswith("[VALIDATION] validate_file")


class TestCommandDeniedError:
    def test_attributes(self) -> None:
        err = CommandDeniedError("execute_validation", "rm")
        assert err.command == "rm"
        assert err.rule == "command_gate"
        assert "command not allowed: rm" in str(err)


class TestCommandTimeoutError:
    def test_attributes(self) -> None:
        err = CommandTimeoutError("execute", 2.5, command="sleep 10")
        assert err.timeout == 2.5
        assert err.command == "sleep 10"
        assert "timed out after 2.5s while running sleep 10" in str(err)
        assert err.kind == "EXECUTION"
