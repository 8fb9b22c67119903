#!/usr/bin/env python3
"""Deckhand CLI - Task orchestration for release deployments over SSH."""

import typer
from rich.console import Console

from deckhand.cli_host_commands import register_host_commands
from deckhand.cli_task_commands import register_task_commands

app = typer.Typer(
    name="deckhand",
    help="""Deckhand - Release deployments as ordered tasks over SSH

Hosts live in .hosts.yaml. Tasks run one after another, host by host.

Quick start:
  dh hosts                        # Show configured hosts
  dh list                         # Browse tasks
  dh tree deploy                  # See what deploy will run
  dh run deploy stage=prod        # Make it happen

More commands: dh --help
""",
    add_completion=False,
)

console = Console()

# Attach modular subcommands
register_task_commands(app, console)
register_host_commands(app, console)


def main():
    app()


if __name__ == "__main__":
    main()
