"""Execution context shared by every task of a run.

The context carries the selected host (or ``None`` for local-only runs) and a
layered key/value store. Lookups walk the layers from the innermost scope
outwards::

    scope overrides -> run overrides -> host config -> host fields -> defaults

Every task invocation runs inside ``scope()``, so values written with
``set()`` disappear once that task returns and never leak to the caller.
"""
from __future__ import annotations

from collections import ChainMap
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, Mapping, Optional, Union

from deckhand.core.errors import NoHostSelectedError
from deckhand.core.template import MISSING, CommandTemplate, as_template

if TYPE_CHECKING:
    from deckhand.core.orchestrator import Orchestrator, TaskOutcome
    from deckhand.core.prompts import Prompter
    from deckhand.core.runner import CommandResult, CommandRunner
    from deckhand.hosts.registry import Host, HostRegistry

Command = Union[str, CommandTemplate]


@dataclass(frozen=True)
class Lazy:
    """Value computed from the context each time it is read."""
    factory: Callable[["ExecutionContext"], Any]


def lazy(factory: Callable[["ExecutionContext"], Any]) -> Lazy:
    """Mark *factory* as a lazily evaluated context value."""
    return Lazy(factory)


def templated(source: str) -> Lazy:
    """Value rendered from other context values, e.g. "{{deploy_path}}/current"."""
    template = as_template(source)
    return Lazy(lambda context: template.render(context.lookup))


class ExecutionContext:
    """Host selection plus scoped configuration for command templating."""

    def __init__(
        self,
        defaults: Optional[Mapping[str, Any]] = None,
        host: Optional["Host"] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        registry: Optional["HostRegistry"] = None,
        runner: Optional["CommandRunner"] = None,
        prompter: Optional["Prompter"] = None,
        orchestrator: Optional["Orchestrator"] = None,
    ):
        self.defaults: Dict[str, Any] = dict(defaults or {})
        self.host = host
        self.overrides: Dict[str, Any] = dict(overrides or {})
        self.registry = registry
        self.runner = runner
        self.prompter = prompter
        self.orchestrator = orchestrator

        host_layers = []
        if host is not None:
            host_layers = [dict(host.config), host.fields()]
        self._values = ChainMap({}, self.overrides, *host_layers, self.defaults)

    # ── host selection ────────────────────────────────────────────────

    def for_host(self, host: Optional["Host"]) -> "ExecutionContext":
        """Return a fresh context bound to *host* with the same collaborators."""
        return ExecutionContext(
            defaults=self.defaults,
            host=host,
            overrides=self.overrides,
            registry=self.registry,
            runner=self.runner,
            prompter=self.prompter,
            orchestrator=self.orchestrator,
        )

    @property
    def is_local(self) -> bool:
        return self.host is None

    def require_host(self) -> "Host":
        """Return the selected host or raise NoHostSelectedError."""
        if self.host is None:
            raise NoHostSelectedError(
                "This operation needs a remote host. "
                "Select one by alias or label (e.g. 'dh run deploy stage=prod')."
            )
        return self.host

    # ── values ────────────────────────────────────────────────────────

    def lookup(self, name: str) -> Any:
        """Return the value bound to *name*, or MISSING."""
        value = self._values.get(name, MISSING)
        if isinstance(value, Lazy):
            value = value.factory(self)
        return value

    def get(self, name: str, default: Any = None) -> Any:
        value = self.lookup(name)
        return default if value is MISSING else value

    def __getitem__(self, name: str) -> Any:
        value = self.lookup(name)
        if value is MISSING:
            raise KeyError(name)
        return value

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def set(self, name: str, value: Any) -> None:
        """Bind *name* in the innermost scope only."""
        self._values[name] = value

    def pin(self, name: str) -> Any:
        """Evaluate a lazy value once and bind the result in the innermost scope."""
        value = self[name]
        self.set(name, value)
        return value

    @property
    def depth(self) -> int:
        """Number of scopes pushed on top of the base layers."""
        base = 5 if self.host is not None else 3
        return len(self._values.maps) - base

    @contextmanager
    def scope(self, **overrides: Any) -> Iterator["ExecutionContext"]:
        """Push a new value layer for the duration of the block."""
        previous = self._values
        self._values = previous.new_child(dict(overrides))
        try:
            yield self
        finally:
            self._values = previous

    @contextmanager
    def within(self, path: Command) -> Iterator["ExecutionContext"]:
        """Run remote commands in *path* for the duration of the block."""
        with self.scope(cwd=self.render(path)):
            yield self

    def render(self, command: Command) -> str:
        """Interpolate placeholders in *command* against this context."""
        return as_template(command).render(self.lookup)

    # ── command helpers used by task actions ──────────────────────────

    def run(self, command: Command, tolerate: bool = False) -> "CommandResult":
        return self.runner.run_remote(command, self, tolerate=tolerate)

    def run_local(self, command: Command, tolerate: bool = False) -> "CommandResult":
        return self.runner.run_local(command, self, tolerate=tolerate)

    def run_best_effort(self, command: Command) -> "CommandResult":
        return self.runner.run_best_effort(command, self)

    def test(self, command: Command) -> bool:
        return self.runner.test(command, self)

    def download(self, remote_path: Command, local_path: Command) -> None:
        self.runner.download(remote_path, local_path, self)

    def upload(self, local_path: Command, remote_path: Command) -> None:
        self.runner.upload(local_path, remote_path, self)

    def invoke(self, name: str) -> "TaskOutcome":
        """Run another task explicitly, outside any dependency list."""
        return self.orchestrator.invoke(name, self)

    def __repr__(self) -> str:
        target = self.host.alias if self.host is not None else "local"
        return f"<ExecutionContext {target} depth={self.depth}>"
