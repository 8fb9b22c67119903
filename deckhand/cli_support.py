"""Shared utilities for Deckhand CLI modules."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape

from deckhand.core.prompts import NonInteractivePrompter, Prompter, TyperPrompter
from deckhand.hosts.registry import HostRegistry

# Default hosts file search paths (ordered by priority)
HOSTS_PATHS = [
    "./.hosts.yaml",
    "./hosts.yml",
]


def find_hosts_file(hosts_path: Optional[str] = None) -> str:
    """Locate the active hosts file."""
    if hosts_path:
        return hosts_path

    if env_hosts := os.environ.get("DECKHAND_HOSTS"):
        return env_hosts

    for path in HOSTS_PATHS:
        if Path(path).exists():
            return path

    return ".hosts.yaml"


def load_hosts(hosts_path: Optional[str] = None) -> HostRegistry:
    """Load the hosts file; a missing file yields an empty registry."""
    registry = HostRegistry.load(find_hosts_file(hosts_path))
    return registry if registry is not None else HostRegistry()


def is_mock() -> bool:
    """Return True when CLI runs in mock mode."""
    return os.environ.get("DH_MOCK") == "1"


def setup_file_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    """Set up file logging for CLI commands.

    Args:
        log_file: Path to log file (optional)
        verbose: Enable verbose logging
    """
    from deckhand.core.logger import set_verbose, setup_file_logging as _setup_file_logging
    _setup_file_logging(log_file=log_file, verbose=verbose)
    if verbose:
        set_verbose(True)


def parse_overrides(values: List[str]) -> Dict[str, Any]:
    """Parse repeated ``key=value`` options into context overrides.

    Values are read as YAML scalars, so ``keep_releases=5`` yields an int
    and ``shared_files=[.env, auth.json]`` a list.

    Raises:
        typer.BadParameter: If an item has no '=' or an empty key
    """
    overrides: Dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got '{item}'")
        try:
            value = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            value = raw
        overrides[key.strip()] = value
    return overrides


def get_prompter(yes_flag: bool = False) -> Prompter:
    """Interactive prompts on a terminal, automatic rejection otherwise."""
    if sys.stdin.isatty():
        return TyperPrompter(assume_yes=yes_flag)
    return NonInteractivePrompter(assume_yes=yes_flag)


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: bool = False,
    exit_code: int = 1
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True
        exit_code: Exit code to use
    """
    console.print(f"[red]Error:[/red] {escape(str(e))}")
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    """Print success message with consistent formatting."""
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    """Print error message with consistent formatting."""
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    """Print warning message with consistent formatting."""
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    """Print info message with consistent formatting."""
    console.print(f"[cyan]{prefix}[/cyan] {message}")
