"""Host CLI commands."""
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from deckhand.core.errors import DeckhandError

# Module-level console instance (will be set by register function)
console: Console = Console()


def hosts(
    hosts_file: Optional[str] = typer.Option(None, "--hosts", help="Path to hosts file"),
):
    """List configured hosts."""
    from deckhand.cli_support import find_hosts_file, handle_cli_error, load_hosts, print_warning

    try:
        registry = load_hosts(hosts_file)
    except DeckhandError as e:
        handle_cli_error(e, console)

    if not len(registry):
        print_warning(console, f"No hosts configured ({find_hosts_file(hosts_file)} not found or empty)")
        return

    table = Table(title="Hosts", show_header=True, header_style="bold cyan")
    table.add_column("Alias", style="bold")
    table.add_column("Connection")
    table.add_column("Deploy path")
    table.add_column("Labels")

    for host in registry:
        labels = ", ".join(f"{k}={v}" for k, v in host.labels.items())
        connection = host.connection_string
        if host.port != 22:
            connection += f":{host.port}"
        table.add_row(host.alias, connection, host.deploy_path, labels or "-")

    console.print(table)


def register_host_commands(app: typer.Typer, shared_console: Console):
    """Register host commands with the main Typer app."""
    global console
    console = shared_console

    app.command()(hosts)
