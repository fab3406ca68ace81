"""wtsandbox CLI entrypoint."""

from __future__ import annotations

import click

from wtsandbox import __version__


@click.group()
@click.version_option(version=__version__, prog_name="wtsandbox")
def main() -> None:
    """wtsandbox — verify code changes in disposable git worktrees."""


# Register subcommands
from wtsandbox.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
