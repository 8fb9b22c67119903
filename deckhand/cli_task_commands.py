"""Task CLI commands - run, list, tree."""
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from deckhand.cli_support import is_mock
from deckhand.core.errors import DeckhandError, TaskFailedError
from deckhand.core.orchestrator import Orchestrator, TaskOutcome
from deckhand.core.runner import CommandRunner
from deckhand.recipes import build_registry

# Module-level console instance (will be set by register function)
console: Console = Console()

OUTCOME_LABELS = {
    TaskOutcome.SUCCEEDED: "[green]done[/green]",
    TaskOutcome.SKIPPED: "[yellow]skipped[/yellow]",
    TaskOutcome.SOFT_FAILED: "[yellow]done with warnings[/yellow]",
}


def run(
    task: str = typer.Argument(..., help="Task to run, e.g. deploy or database:pull"),
    selectors: Optional[List[str]] = typer.Argument(
        None, help="Host aliases or label filters (stage=prod)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to confirmations"),
    options: List[str] = typer.Option(
        [], "--set", "-o", help="Override a config value (key=value)"
    ),
    hosts_file: Optional[str] = typer.Option(None, "--hosts", help="Path to hosts file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Run a task on the selected hosts, one host after another."""
    from deckhand.cli_support import (
        get_prompter,
        handle_cli_error,
        load_hosts,
        parse_overrides,
        print_error,
        print_info,
        print_success,
        print_warning,
        setup_file_logging,
    )

    setup_file_logging(log_file=log_file, verbose=verbose)
    overrides = parse_overrides(options)

    try:
        registry = build_registry()
        hosts = load_hosts(hosts_file)
        selected = hosts.select(selectors) if selectors else []
        if selectors and not selected:
            print_error(console, f"No hosts match: {' '.join(selectors)}")
            raise typer.Exit(1)

        orchestrator = Orchestrator(
            registry,
            runner=CommandRunner(mock=is_mock()),
            prompter=get_prompter(yes_flag=yes),
        )
        context = orchestrator.context(hosts=hosts, overrides=overrides)
        if is_mock():
            print_info(console, "Mock mode: no commands will be executed")
        report = orchestrator.run(task, selected, context)
    except TaskFailedError as e:
        print_error(console, escape(f"Task '{e.task}' failed: {e.cause}"))
        if len(e.chain) > 1:
            console.print(f"  while running {' → '.join(e.chain)}")
        if verbose:
            console.print_exception()
        raise typer.Exit(1)
    except DeckhandError as e:
        handle_cli_error(e, console, verbose, exit_code=1)

    for result in report.results:
        target = result.host or "local"
        console.print(f"  {target}: {OUTCOME_LABELS[result.outcome]}")
    if report.warnings:
        print_warning(console, f"'{task}' finished with {report.warnings} warning(s)")
    else:
        print_success(console, f"'{task}' finished")


def list_tasks(
    show_all: bool = typer.Option(False, "--all", "-a", help="Include internal tasks"),
):
    """List available tasks."""
    registry = build_registry()

    table = Table(title="Tasks", show_header=True, header_style="bold cyan")
    table.add_column("Task", style="bold")
    table.add_column("Description")

    for task in sorted(registry, key=lambda t: t.name):
        if task.hidden and not show_all:
            continue
        table.add_row(task.name, task.description or "")

    console.print(table)


def tree(
    task: str = typer.Argument(..., help="Task to expand"),
):
    """Show the execution plan of a task, including hooks."""
    from deckhand.cli_support import handle_cli_error

    orchestrator = Orchestrator(build_registry())
    try:
        steps = orchestrator.plan(task)
    except DeckhandError as e:
        handle_cli_error(e, console)

    root = Tree(f"[bold]{steps[0].name}[/bold]")
    branches = {0: root}
    for step in steps[1:]:
        label = step.name
        if step.relation != "task":
            label = f"[dim]{step.relation}:[/dim] {step.name}"
        branches[step.depth] = branches[step.depth - 1].add(label)

    console.print(root)


def register_task_commands(app: typer.Typer, shared_console: Console):
    """Register task commands with the main Typer app.

    Args:
        app: Main Typer application
        shared_console: Shared Rich console instance
    """
    global console
    console = shared_console

    app.command()(run)
    app.command("list")(list_tasks)
    app.command()(tree)
