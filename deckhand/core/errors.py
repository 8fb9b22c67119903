"""Exception hierarchy for Deckhand operations.

Configuration and resolution errors are always fatal to a run. Execution
errors (local commands, remote commands, file transfers) are fatal unless the
task that raised them is marked best-effort.
"""
from typing import Optional, Sequence, Tuple


class DeckhandError(Exception):
    """Base class for all Deckhand errors."""
    pass


class ConfigParseError(DeckhandError):
    """Raised when a host configuration file is malformed."""
    pass


class UnknownHostError(DeckhandError):
    """Raised when a host alias is not present in the registry."""

    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"Unknown host: {alias}")


class NoHostSelectedError(DeckhandError):
    """Raised when a remote operation runs without a selected host."""
    pass


class DuplicateTaskError(DeckhandError):
    """Raised when a task name is registered twice."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Task already registered: {name}")


class UnknownTaskError(DeckhandError):
    """Raised when a task name cannot be resolved."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown task: {name}")


class CyclicTaskError(DeckhandError):
    """Raised when a task includes itself through its invocation chain."""

    def __init__(self, chain: Sequence[str]):
        self.chain: Tuple[str, ...] = tuple(chain)
        super().__init__(f"Task cycle detected: {' -> '.join(self.chain)}")


class UnresolvedPlaceholderError(DeckhandError):
    """Raised when a command template references unbound names."""

    def __init__(self, names: Sequence[str], template: str = ""):
        self.names: Tuple[str, ...] = tuple(names)
        self.template = template
        listed = ", ".join(self.names)
        message = f"Unresolved placeholder(s): {listed}"
        if template:
            message += f" in '{template}'"
        super().__init__(message)


class ExecutionError(DeckhandError):
    """Base class for failures while running commands or transfers."""
    pass


class LocalExecutionError(ExecutionError):
    """Raised when a local command exits non-zero."""

    def __init__(self, message: str, result=None):
        self.result = result
        super().__init__(message)


class RemoteExecutionError(ExecutionError):
    """Raised when a remote command exits non-zero or the transport fails."""

    def __init__(self, message: str, result=None, host: Optional[str] = None):
        self.result = result
        self.host = host
        super().__init__(message)


class TransferError(ExecutionError):
    """Raised when an upload or download fails."""
    pass


class TaskFailedError(DeckhandError):
    """Raised by the orchestrator when a task fails fatally.

    Attributes:
        task: Name of the innermost task that failed
        chain: Invocation chain leading to the failing task
        cause: The original exception
    """

    def __init__(self, task: str, chain: Sequence[str], cause: BaseException):
        self.task = task
        self.chain: Tuple[str, ...] = tuple(chain)
        self.cause = cause
        super().__init__(f"Task '{task}' failed: {cause}")
