"""``wtsandbox run`` — execute a request file in a fresh worktree."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from wtsandbox.cli_commands._output import console, print_response


@click.command()
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--repo",
    default=".",
    type=click.Path(exists=True, file_okay=False),
    help="Git repository to snapshot.",
)
@click.option(
    "--default-steps",
    is_flag=True,
    help="Use the project's build/test/lint steps when the request has none.",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Override the per-request timeout (seconds).",
)
@click.option("--diff", "show_diff", is_flag=True, help="Print the resulting diff.")
@click.option("--json", "as_json", is_flag=True, help="Output the response as JSON.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option("--telemetry", is_flag=True, help="Export tracing spans to the console.")
@click.option(
    "--otlp-endpoint",
    default=None,
    help="Export tracing spans via OTLP/gRPC to this endpoint.",
)
def run(
    request_file: str,
    repo: str,
    default_steps: bool,
    timeout: float | None,
    show_diff: bool,
    as_json: bool,
    verbose: bool,
    telemetry: bool,
    otlp_endpoint: str | None,
) -> None:
    """Apply and verify the changes described in REQUEST_FILE (YAML or JSON)."""
    from pydantic import ValidationError as PydanticValidationError

    from wtsandbox.config import load_yaml_document, resolve_project_config
    from wtsandbox.errors import SandboxError
    from wtsandbox.manager import SandboxManager
    from wtsandbox.models import ExecutionRequest, ExecutionResponse

    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    if telemetry or otlp_endpoint:
        from wtsandbox.telemetry import configure_telemetry

        try:
            configure_telemetry(console=telemetry, otlp_endpoint=otlp_endpoint)
        except ImportError as exc:
            console.print(f"[yellow]{exc}[/yellow]")

    try:
        request = ExecutionRequest.model_validate(load_yaml_document(Path(request_file)))
    except (SandboxError, PydanticValidationError) as exc:
        console.print(f"[red]Invalid request:[/red] {exc}")
        sys.exit(1)

    project = resolve_project_config(repo)
    overrides = {"timeout": timeout} if timeout is not None else {}
    try:
        manager = SandboxManager.from_repo(
            repo, project=project, config=project.executor_config(**overrides)
        )
    except SandboxError as exc:
        console.print(f"[red]Setup error:[/red] {exc}")
        sys.exit(1)

    if default_steps and not request.validation_steps:
        request.validation_steps = manager.default_validation_steps()

    if verbose:
        console.print(f"Running request {request.id} ({len(request.files)} file(s))")
        for step in request.validation_steps:
            console.print(f"  step: {step.display}")

    async def _run() -> tuple[ExecutionResponse | None, SandboxError | None]:
        async with manager:
            try:
                return await manager.execute_code(request), None
            except SandboxError as exc:
                return exc.response, exc

    response, error = asyncio.run(_run())

    if response is not None:
        print_response(response, as_json=as_json, show_diff=show_diff)
    if error is not None:
        if response is None:
            console.print(f"[red]Execution error:[/red] {error}")
        sys.exit(1)
