"""``wtsandbox validate`` — check files against the rules without running anything."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from wtsandbox.cli_commands._output import console
from wtsandbox.cli_commands.rules import resolve_rules_path


@click.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--repo",
    default=".",
    type=click.Path(exists=True, file_okay=False),
    help="Repository the files belong to.",
)
@click.option(
    "--rules",
    "rules_file",
    default=None,
    type=click.Path(dir_okay=False),
    help="Rules document (default: from the project configuration).",
)
def validate(files: tuple[str, ...], repo: str, rules_file: str | None) -> None:
    """Validate FILES as updates against the repository's rules."""
    from wtsandbox.errors import ValidationError
    from wtsandbox.validator import Validator

    validator = Validator(rules_path=resolve_rules_path(repo, rules_file))
    repo_root = Path(repo).resolve()
    failures = 0

    for name in files:
        path = Path(name).resolve()
        rel = path.relative_to(repo_root).as_posix() if path.is_relative_to(repo_root) else name
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            console.print(f"[red]FAIL[/red] {rel}: cannot read file ({exc})")
            failures += 1
            continue

        try:
            validator.validate_code(rel, content)
        except ValidationError as exc:
            console.print(f"[red]FAIL[/red] {rel}: {exc.message}")
            failures += 1
        else:
            console.print(f"[green]OK[/green]   {rel}")

    if failures:
        console.print(f"\n[red]{failures} of {len(files)} file(s) failed validation.[/red]")
        sys.exit(1)
    console.print(f"\n[green]All {len(files)} file(s) passed validation.[/green]")
