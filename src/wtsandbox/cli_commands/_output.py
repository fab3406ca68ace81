"""Shared CLI output formatters."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from wtsandbox.models import ExecutionResponse, ExecutionStatus  # noqa: TC001
from wtsandbox.validator import ContentRule, FileRule, Rules  # noqa: TC001

console = Console()

_STATUS_STYLES = {
    ExecutionStatus.COMPLETED: "green",
    ExecutionStatus.FAILED: "red",
    ExecutionStatus.TIMEOUT: "yellow",
}


def print_response(response: ExecutionResponse, *, as_json: bool = False, show_diff: bool = False) -> None:
    """Pretty-print an execution response."""
    if as_json:
        console.print_json(response.model_dump_json())
        return

    style = _STATUS_STYLES.get(response.status, "white")
    console.print(f"\n[bold]Request {response.request_id}[/bold]")
    console.print(f"  Status: [{style}]{response.status.value}[/{style}]")
    console.print(f"  Worktree: {response.worktree_id or '-'}")
    console.print(f"  Duration: {response.duration:.2f}s")
    if response.error:
        console.print(f"  Error: {response.error}")

    if response.results:
        table = Table(title="Validation Steps")
        table.add_column("Command", style="cyan")
        table.add_column("Exit", justify="right")
        table.add_column("Time", justify="right")
        table.add_column("Output")

        for result in response.results:
            exit_text = "timeout" if result.timed_out else str(result.exit_code)
            table.add_row(
                result.command,
                exit_text,
                f"{result.duration:.2f}s",
                _truncate(_last_line(result.output or result.error)),
            )
        console.print(table)

    if show_diff and response.diff:
        console.print("\n[bold]Diff:[/bold]")
        console.print(response.diff, markup=False, highlight=False)


def print_rules_summary(rules: Rules) -> None:
    """Pretty-print the active rule set."""
    console.print("\n[bold]Size Limits[/bold]")
    console.print(f"  Max file size: {rules.size_rules.max_file_size} bytes")
    console.print(f"  Max total size: {rules.size_rules.max_total_size} bytes")
    console.print(f"  Max files: {rules.size_rules.max_files}")

    print_rules_table(rules.file_rules, rules.content_rules)

    security = rules.security_rules
    console.print("\n[bold]Security[/bold]")
    console.print(f"  Blocked extensions: {', '.join(security.blocked_extensions) or '-'}")
    console.print(f"  Blocked paths: {', '.join(security.blocked_paths) or '-'}")
    console.print(f"  Require tests: {security.require_tests}")
    console.print(f"  Require linting: {security.require_linting}")


def print_rules_table(file_rules: list[FileRule], content_rules: list[ContentRule]) -> None:
    """Pretty-print file and content rules as tables."""
    if file_rules:
        table = Table(title="File Rules")
        table.add_column("Name", style="cyan")
        table.add_column("Pattern")
        table.add_column("Allowed")
        table.add_column("Blocked")
        for rule in file_rules:
            table.add_row(
                rule.name or "-",
                rule.path_pattern,
                ", ".join(rule.allowed_operations) or "-",
                ", ".join(rule.blocked_operations) or "-",
            )
        console.print(table)

    if content_rules:
        table = Table(title="Content Rules")
        table.add_column("Name", style="cyan")
        table.add_column("Pattern")
        table.add_column("Required", justify="right")
        table.add_column("Blocked", justify="right")
        for rule in content_rules:
            table.add_row(
                rule.name or "-",
                rule.path_pattern,
                str(len(rule.patterns)),
                str(len(rule.blocked_patterns)),
            )
        console.print(table)

    if not file_rules and not content_rules:
        console.print("[yellow]No file or content rules apply.[/yellow]")


def _last_line(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return lines[-1] if lines else ""


def _truncate(text: str, max_len: int = 80) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
