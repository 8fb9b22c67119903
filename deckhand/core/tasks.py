"""Task graph: named tasks, composites and lifecycle hooks."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from deckhand.core.errors import DuplicateTaskError, UnknownTaskError
from deckhand.core.prompts import Confirmation

Action = Callable[[Any], Any]


class HookEvent(Enum):
    """Lifecycle events a hook can be bound to."""
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class Task:
    """A leaf action or an ordered list of child task names.

    Attributes:
        name: Unique task name, e.g. "database:pull"
        description: Human readable description for listings
        children: Child task names, in execution order (composite tasks)
        action: Callable receiving the ExecutionContext (leaf tasks)
        best_effort: Downgrade execution errors to warnings
        confirmations: Gates evaluated before a leaf action runs
        stop_on_skip: Composite stops after a skipped child instead of continuing
        hidden: Omit from task listings
    """
    name: str
    description: Optional[str] = None
    children: Tuple[str, ...] = ()
    action: Optional[Action] = None
    best_effort: bool = False
    confirmations: Tuple[Confirmation, ...] = ()
    stop_on_skip: bool = False
    hidden: bool = False

    @property
    def is_composite(self) -> bool:
        return self.action is None

    @property
    def body(self) -> Union[Tuple[str, ...], Action]:
        return self.children if self.is_composite else self.action


@dataclass(frozen=True)
class Hook:
    """Runs *target* right after *trigger* emits *event*."""
    trigger: str
    event: HookEvent
    target: str


class TaskRegistry:
    """Registry of tasks and hooks, built once per process.

    Args:
        defaults: Default context values recipes ship with (e.g. "bin/php")
    """

    def __init__(self, defaults: Optional[Dict[str, Any]] = None):
        self._tasks: Dict[str, Task] = {}
        self._hooks: Dict[Tuple[str, HookEvent], List[Hook]] = {}
        self.defaults: Dict[str, Any] = dict(defaults or {})

    def register(
        self,
        name: str,
        body: Union[Sequence[str], Action],
        description: Optional[str] = None,
        *,
        best_effort: bool = False,
        confirmations: Sequence[Confirmation] = (),
        stop_on_skip: bool = False,
        hidden: bool = False,
    ) -> Task:
        """Register a task.

        Args:
            name: Unique task name
            body: List of child task names (composite) or a callable (leaf)
            description: Optional description

        Raises:
            DuplicateTaskError: If *name* is already registered
            TypeError: If *body* is neither callable nor a sequence of names
        """
        if name in self._tasks:
            raise DuplicateTaskError(name)

        if callable(body):
            task = Task(
                name=name,
                description=description or _first_doc_line(body),
                action=body,
                best_effort=best_effort,
                confirmations=tuple(confirmations),
                hidden=hidden,
            )
        elif isinstance(body, (list, tuple)) and all(isinstance(c, str) for c in body):
            if confirmations:
                raise TypeError(f"Task '{name}': confirmations apply to leaf tasks only")
            task = Task(
                name=name,
                description=description,
                children=tuple(body),
                best_effort=best_effort,
                stop_on_skip=stop_on_skip,
                hidden=hidden,
            )
        else:
            raise TypeError(
                f"Task '{name}' body must be a callable or a list of task names, "
                f"got {type(body).__name__}"
            )

        self._tasks[name] = task
        return task

    def task(self, name: str, description: Optional[str] = None, **options):
        """Decorator registering a leaf task.

        Example:
            @registry.task("cache:warmup")
            def cache_warmup(ctx):
                ctx.run("cd {{release_or_current_path}} && {{bin/cms}} cache:warmup")
        """
        def decorator(func: Action) -> Action:
            self.register(name, func, description, **options)
            return func
        return decorator

    def resolve(self, name: str) -> Task:
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(name) from None

    # ── hooks ─────────────────────────────────────────────────────────

    def add_hook(self, trigger: str, event: HookEvent, target: str) -> Hook:
        """Append a hook; hooks for the same trigger and event run in order."""
        hook = Hook(trigger=trigger, event=HookEvent(event), target=target)
        self._hooks.setdefault((trigger, hook.event), []).append(hook)
        return hook

    def after(self, trigger: str, target: str) -> Hook:
        return self.add_hook(trigger, HookEvent.SUCCESS, target)

    def on_failure(self, trigger: str, target: str) -> Hook:
        return self.add_hook(trigger, HookEvent.FAILURE, target)

    def hooks(self, trigger: str, event: HookEvent) -> List[str]:
        return [hook.target for hook in self._hooks.get((trigger, HookEvent(event)), [])]

    # ── inspection ────────────────────────────────────────────────────

    def validate(self) -> None:
        """Check that every child and hook target names a registered task.

        Raises:
            UnknownTaskError: For the first dangling reference found
        """
        for task in self._tasks.values():
            for child in task.children:
                if child not in self._tasks:
                    raise UnknownTaskError(child)
        for hooks in self._hooks.values():
            for hook in hooks:
                if hook.target not in self._tasks:
                    raise UnknownTaskError(hook.target)

    def names(self) -> List[str]:
        return list(self._tasks)

    def __contains__(self, name: str) -> bool:
        return name in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)


def _first_doc_line(func: Action) -> Optional[str]:
    doc = getattr(func, "__doc__", None)
    if not doc:
        return None
    return doc.strip().splitlines()[0].strip() or None
