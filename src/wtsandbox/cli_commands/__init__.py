"""CLI subcommand registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all subcommands on the CLI group."""
    from wtsandbox.cli_commands.rules import rules
    from wtsandbox.cli_commands.run import run
    from wtsandbox.cli_commands.validate import validate

    cli.add_command(run)
    cli.add_command(validate)
    cli.add_command(rules)
