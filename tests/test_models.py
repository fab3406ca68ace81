"""Tests for request, response and event models."""

from datetime import timedelta

import pytest

from wtsandbox.errors import InternalError
from wtsandbox.models import (
    EventType,
    ExecutionRequest,
    ExecutionResponse,
    ExecutionResult,
    ExecutionStatus,
    FileChange,
    SandboxEvent,
    SandboxMetrics,
    ValidationStep,
)


class TestFileChange:
    def test_defaults(self) -> None:
        change = FileChange(path="main.go")
        assert change.operation == "update"
        assert change.content == ""

    def test_size_counts_utf8_bytes(self) -> None:
        assert FileChange(path="a.txt", content="héllo").size == 6

    def test_unknown_operation_survives_parsing(self) -> None:
        change = FileChange.model_validate({"path": "a.txt", "operation": "rename"})
        assert change.operation == "rename"


class TestExecutionRequest:
    def test_generated_ids_are_unique(self) -> None:
        assert ExecutionRequest().id != ExecutionRequest().id

    def test_parse_from_mapping(self) -> None:
        request = ExecutionRequest.model_validate(
            {
                "id": "req-1",
                "files": [{"path": "a.go", "content": "x", "operation": "create"}],
                "validation_steps": [{"name": "build", "command": "go", "args": ["build"], "required": True}],
            }
        )
        assert request.id == "req-1"
        assert request.type == "validation"
        assert request.files[0].operation == "create"
        assert request.validation_steps[0].display == "go build"


class TestExecutionResult:
    def test_success(self) -> None:
        assert ExecutionResult(command="true").success
        assert not ExecutionResult(command="false", exit_code=1).success
        assert not ExecutionResult(command="sleep", timed_out=True).success


class TestExecutionResponse:
    def test_lifecycle(self) -> None:
        response = ExecutionResponse(request_id="r")
        assert response.status is ExecutionStatus.PENDING
        assert response.end_time is None

        response.mark_running()
        assert response.status is ExecutionStatus.RUNNING

        response.finish(ExecutionStatus.COMPLETED)
        assert response.success
        assert response.end_time is not None
        assert response.end_time >= response.start_time

    def test_finish_records_error(self) -> None:
        response = ExecutionResponse(request_id="r")
        response.mark_running()
        response.finish(ExecutionStatus.TIMEOUT, "too slow")
        assert response.error == "too slow"
        assert not response.success

    def test_cannot_run_twice(self) -> None:
        response = ExecutionResponse(request_id="r")
        response.mark_running()
        with pytest.raises(InternalError):
            response.mark_running()

    def test_cannot_leave_terminal_status(self) -> None:
        response = ExecutionResponse(request_id="r")
        response.finish(ExecutionStatus.FAILED)
        with pytest.raises(InternalError):
            response.finish(ExecutionStatus.COMPLETED)
        with pytest.raises(InternalError):
            response.mark_running()

    def test_finish_requires_terminal_status(self) -> None:
        response = ExecutionResponse(request_id="r")
        with pytest.raises(InternalError):
            response.finish(ExecutionStatus.RUNNING)

    def test_duration_uses_end_time(self) -> None:
        response = ExecutionResponse(request_id="r")
        response.end_time = response.start_time + timedelta(seconds=3)
        assert response.duration == 3.0

    def test_json_round_trip_keeps_status(self) -> None:
        response = ExecutionResponse(request_id="r", results=[ExecutionResult(command="ls")])
        restored = ExecutionResponse.model_validate_json(response.model_dump_json())
        assert restored.status is ExecutionStatus.PENDING
        assert restored.results[0].command == "ls"


class TestStatus:
    @pytest.mark.parametrize(
        ("status", "terminal"),
        [
            (ExecutionStatus.PENDING, False),
            (ExecutionStatus.RUNNING, False),
            (ExecutionStatus.COMPLETED, True),
            (ExecutionStatus.FAILED, True),
            (ExecutionStatus.TIMEOUT, True),
        ],
    )
    def test_is_terminal(self, status: ExecutionStatus, terminal: bool) -> None:
        assert status.is_terminal is terminal


class TestEventsAndMetrics:
    def test_event_defaults(self) -> None:
        event = SandboxEvent(type=EventType.SANDBOX_CREATED, sandbox_id="wt")
        assert event.data == {}
        assert event.error == ""
        assert event.timestamp.tzinfo is not None

    def test_metrics_start_at_zero(self) -> None:
        metrics = SandboxMetrics()
        assert metrics.total_executions == 0
        assert metrics.average_exec_time == 0.0
        assert metrics.last_cleanup_time is None

    def test_step_display_without_args(self) -> None:
        assert ValidationStep(command="make").display == "make"
