"""Logging for Deckhand runs.

Console output goes through rich; the optional log file records every line
with the host and task it belongs to, so interleaved output from a
multi-host run can be told apart afterwards.
"""
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Dict, Iterator, Optional

from rich.console import Console
from rich.logging import RichHandler

console = Console()

LOG_DIR = Path.home() / ".local" / "state" / "deckhand"
LOG_FILE = LOG_DIR / "deckhand.log"
FILE_FORMAT = "%(asctime)s | %(dh_host)s | %(dh_task)s | %(levelname)s | %(message)s"

_run_context: ContextVar[Dict[str, str]] = ContextVar("deckhand_run_context", default={})
_file_handler: Optional[logging.FileHandler] = None


class RunContextFilter(logging.Filter):
    """Stamp records with the host and task currently running ("-" if none)."""

    def filter(self, record: logging.LogRecord) -> bool:
        current = _run_context.get()
        record.dh_host = current.get("host", "-")
        record.dh_task = current.get("task", "-")
        return True


@contextmanager
def log_context(**values: str) -> Iterator[None]:
    """Bind ``host=`` and/or ``task=`` to every record logged inside the block."""
    token = _run_context.set({**_run_context.get(), **values})
    try:
        yield
    finally:
        _run_context.reset(token)


def setup_file_logging(log_file: str = None, verbose: bool = False) -> Path:
    """Set up file logging for Deckhand runs.

    Args:
        log_file: Path to log file (defaults to ~/.local/state/deckhand/deckhand.log)
        verbose: Enable debug-level logging, including every command executed

    Returns:
        The file actually written to. Falls back to /tmp if the state
        directory is not writable. Calling again returns the first file.
    """
    global _file_handler

    if _file_handler is not None:
        return Path(_file_handler.baseFilename)

    target_log_file = Path(log_file) if log_file else LOG_FILE
    try:
        target_log_file.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        target_log_file = Path("/tmp/deckhand.log")

    level = logging.DEBUG if verbose else logging.INFO
    handler = logging.FileHandler(target_log_file)
    handler.setLevel(level)
    handler.addFilter(RunContextFilter())
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger = logging.getLogger("deckhand")
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    _file_handler = handler

    root_logger.info(f"Deckhand logging initialized: {target_log_file}")
    return target_log_file


def set_verbose(verbose: bool = True):
    """Switch console loggers between INFO and DEBUG."""
    level = logging.DEBUG if verbose else logging.INFO
    for name in list(logging.root.manager.loggerDict):
        if name == "deckhand" or name.startswith("deckhand."):
            logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a rich console handler attached once."""
    logger = logging.getLogger(name)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=console, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    return logger
