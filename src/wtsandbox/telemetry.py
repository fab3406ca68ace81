"""OpenTelemetry tracing for wtsandbox.

Spans are opened through :func:`span`, which works whether or not the SDK is
installed: without a configured provider the API hands out no-op spans.
The ``*_attributes`` and ``record_*`` helpers translate requests, steps,
results and responses into ``wtsandbox.*`` span attributes.

Usage::

    with span("execute", request_attributes(request)) as current:
        ...
        record_response(current, response)

Call :func:`configure_telemetry` once at startup to export spans (requires
the ``otel`` extra: ``pip install wtsandbox[otel]``).
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from opentelemetry.util.types import AttributeValue

    from wtsandbox.models import ExecutionRequest, ExecutionResponse, ExecutionResult, ValidationStep

ATTR_REQUEST_ID = "wtsandbox.request.id"
ATTR_REQUEST_TYPE = "wtsandbox.request.type"
ATTR_FILE_COUNT = "wtsandbox.request.file_count"
ATTR_STEP_COUNT = "wtsandbox.request.step_count"
ATTR_WORKTREE_ID = "wtsandbox.worktree.id"
ATTR_STATUS = "wtsandbox.status"
ATTR_DURATION = "wtsandbox.duration"
ATTR_RESULT_COUNT = "wtsandbox.result_count"
ATTR_STEP_NAME = "wtsandbox.step.name"
ATTR_STEP_COMMAND = "wtsandbox.step.command"
ATTR_STEP_REQUIRED = "wtsandbox.step.required"
ATTR_EXIT_CODE = "wtsandbox.step.exit_code"
ATTR_TIMED_OUT = "wtsandbox.step.timed_out"

_INSTRUMENTATION_NAME = "wtsandbox"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return a :class:`~opentelemetry.trace.Tracer` for *name* (no-op if unconfigured)."""
    return trace.get_tracer(name or _INSTRUMENTATION_NAME)


@contextlib.contextmanager
def span(
    name: str,
    attributes: Mapping[str, AttributeValue] | None = None,
) -> Iterator[trace.Span]:
    """Start ``wtsandbox.<name>`` as the current span.

    Exceptions escaping the block are recorded on the span and re-raised.
    """
    tracer = get_tracer(_INSTRUMENTATION_NAME)
    with tracer.start_as_current_span(f"{_INSTRUMENTATION_NAME}.{name}", attributes=attributes) as current:
        yield current


def request_attributes(request: ExecutionRequest) -> dict[str, AttributeValue]:
    return {
        ATTR_REQUEST_ID: request.id,
        ATTR_REQUEST_TYPE: request.type,
        ATTR_FILE_COUNT: len(request.files),
        ATTR_STEP_COUNT: len(request.validation_steps),
    }


def step_attributes(step: ValidationStep, worktree_id: str) -> dict[str, AttributeValue]:
    return {
        ATTR_STEP_NAME: step.name,
        ATTR_STEP_COMMAND: step.display,
        ATTR_STEP_REQUIRED: step.required,
        ATTR_WORKTREE_ID: worktree_id,
    }


def record_result(current: trace.Span, result: ExecutionResult) -> None:
    """Attach a step's outcome; non-zero exits and timeouts mark the span as an error."""
    current.set_attribute(ATTR_EXIT_CODE, result.exit_code)
    current.set_attribute(ATTR_TIMED_OUT, result.timed_out)
    current.set_attribute(ATTR_DURATION, result.duration)
    if not result.success:
        current.set_status(Status(StatusCode.ERROR, result.error or "step failed"))


def record_response(current: trace.Span, response: ExecutionResponse) -> None:
    """Attach the response's status and worktree; anything but ``completed`` is an error."""
    current.set_attribute(ATTR_STATUS, response.status.value)
    current.set_attribute(ATTR_RESULT_COUNT, len(response.results))
    if response.worktree_id:
        current.set_attribute(ATTR_WORKTREE_ID, response.worktree_id)
    if response.end_time is not None:
        current.set_attribute(ATTR_DURATION, response.duration)
    if response.status.is_terminal and not response.success:
        current.set_status(Status(StatusCode.ERROR, response.error or response.status.value))


def configure_telemetry(
    *,
    service_name: str = "wtsandbox",
    console: bool = True,
    otlp_endpoint: str | None = None,
) -> None:
    """Install an SDK tracer provider exporting to the console and/or OTLP.

    Console spans are exported synchronously so a short CLI run prints them
    before exiting; OTLP export is batched.

    Raises:
        ImportError: If ``opentelemetry-sdk`` (or, with *otlp_endpoint*, the
            OTLP exporter) is not installed.
    """
    try:
        from opentelemetry.sdk.resources import Resource  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace import TracerProvider  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace.export import (  # pyright: ignore[reportMissingImports]
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )
    except ImportError as exc:
        msg = "opentelemetry-sdk is required for tracing export; install wtsandbox[otel]"
        raise ImportError(msg) from exc

    from wtsandbox import __version__

    processors: list[Any] = []
    if console:
        processors.append(SimpleSpanProcessor(ConsoleSpanExporter()))
    if otlp_endpoint:
        processors.append(BatchSpanProcessor(_otlp_exporter(otlp_endpoint)))

    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": __version__})
    )
    for processor in processors:
        provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)


def _otlp_exporter(endpoint: str) -> Any:
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
    except ImportError as exc:
        msg = "opentelemetry-exporter-otlp is required for OTLP export; install wtsandbox[otel]"
        raise ImportError(msg) from exc
    return OTLPSpanExporter(endpoint=endpoint)
