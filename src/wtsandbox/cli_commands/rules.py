"""``wtsandbox rules`` — show and initialise validation rules."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from wtsandbox.cli_commands._output import console, print_rules_summary, print_rules_table


def resolve_rules_path(repo: str, rules_file: str | None) -> Path:
    """An explicit *rules_file*, else the project's configured rules document."""
    if rules_file:
        return Path(rules_file)
    from wtsandbox.config import resolve_project_config

    project = resolve_project_config(repo)
    return Path(repo) / project.validation.rules_file


_repo_option = click.option(
    "--repo",
    default=".",
    type=click.Path(exists=True, file_okay=False),
    help="Repository whose rules document is used.",
)
_rules_option = click.option(
    "--rules",
    "rules_file",
    default=None,
    type=click.Path(dir_okay=False),
    help="Rules document (default: from the project configuration).",
)


@click.group()
def rules() -> None:
    """Inspect and manage validation rules."""


@rules.command("show")
@_repo_option
@_rules_option
@click.option("--path", "target", default=None, help="Show only the rules that apply to this path.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def show(repo: str, rules_file: str | None, target: str | None, as_json: bool) -> None:
    """Show the active rule set."""
    from wtsandbox.validator import Validator

    validator = Validator(rules_path=resolve_rules_path(repo, rules_file))

    if target is not None:
        file_rules, content_rules = validator.get_rules_for_path(target)
        if as_json:
            data = {
                "file_rules": [r.model_dump() for r in file_rules],
                "content_rules": [r.model_dump() for r in content_rules],
            }
            console.print_json(json.dumps(data))
        else:
            print_rules_table(file_rules, content_rules)
        return

    if as_json:
        console.print_json(validator.rules.model_dump_json())
    else:
        console.print(f"Rules document: {validator.rules_path}")
        print_rules_summary(validator.rules)


@rules.command("init")
@_repo_option
@_rules_option
@click.option("--force", is_flag=True, help="Overwrite an existing rules document.")
def init(repo: str, rules_file: str | None, force: bool) -> None:
    """Write the built-in rule set to the rules document."""
    from wtsandbox.errors import ConfigError
    from wtsandbox.validator import Validator, default_rules

    path = resolve_rules_path(repo, rules_file)
    if path.exists() and not force:
        console.print(f"[yellow]{path} already exists (use --force to overwrite).[/yellow]")
        sys.exit(1)

    validator = Validator(default_rules(), rules_path=path)
    try:
        validator.save_rules()
    except ConfigError as exc:
        console.print(f"[red]Error writing rules:[/red] {exc}")
        sys.exit(1)

    console.print(f"[green]Wrote default rules to {path}[/green]")
