"""Task orchestration: ordered execution, hooks and failure policy."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from deckhand.core.context import ExecutionContext
from deckhand.core.errors import (
    CyclicTaskError,
    ExecutionError,
    TaskFailedError,
)
from deckhand.core.logger import get_logger, log_context
from deckhand.core.prompts import Confirmation, NonInteractivePrompter, Prompter
from deckhand.core.runner import CommandRunner
from deckhand.core.tasks import HookEvent, Task, TaskRegistry
from deckhand.hosts.registry import Host, HostRegistry
from deckhand.models import CommandResult

logger = get_logger(__name__)


class TaskOutcome(Enum):
    """How a task completed. Every outcome counts as success."""
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"          # confirmation rejected
    SOFT_FAILED = "soft_failed"  # best-effort failure downgraded to a warning


@dataclass
class HostOutcome:
    host: Optional[str]
    outcome: TaskOutcome
    warnings: int = 0  # soft failures anywhere in the task tree


@dataclass
class RunReport:
    """Per-host outcomes of a run, in execution order."""
    task: str
    results: List[HostOutcome] = field(default_factory=list)

    @property
    def warnings(self) -> int:
        return sum(r.warnings for r in self.results)


@dataclass
class PlanStep:
    depth: int
    name: str
    relation: str = "task"  # task, after, on failure
    description: Optional[str] = None


class Orchestrator:
    """Runs tasks from a TaskRegistry against an ExecutionContext.

    Tasks run strictly sequentially. A composite runs its children in
    declared order and stops at the first fatal failure. Hooks run right
    after the task they are bound to, outside of that task's scope.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        runner: Optional[CommandRunner] = None,
        prompter: Optional[Prompter] = None,
    ):
        self.registry = registry
        self.runner = runner or CommandRunner()
        self.prompter = prompter or NonInteractivePrompter()
        self._stack: List[str] = []
        self._warnings = 0

    def context(
        self,
        hosts: Optional[HostRegistry] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        host: Optional[Host] = None,
    ) -> ExecutionContext:
        """Build a base context wired to this orchestrator.

        Default values come from the registry's recipes, then the hosts
        file ``config:`` section; *overrides* win over host config.
        """
        defaults: Dict[str, Any] = dict(self.registry.defaults)
        if hosts is not None:
            defaults.update(hosts.defaults)
        return ExecutionContext(
            defaults=defaults,
            host=host,
            overrides=overrides,
            registry=hosts,
            runner=self.runner,
            prompter=self.prompter,
            orchestrator=self,
        )

    # ── runs ──────────────────────────────────────────────────────────

    def run(
        self,
        name: str,
        hosts: Sequence[Host] = (),
        context: Optional[ExecutionContext] = None,
    ) -> RunReport:
        """Run *name* on each host in turn, or once locally without hosts.

        The task completes on one host before the next starts. The first
        fatal failure stops the run and propagates.

        Raises:
            UnknownTaskError: If *name* is not registered
            TaskFailedError: If the task fails fatally on any host
        """
        self.registry.resolve(name)
        base = context or self.context()
        report = RunReport(task=name)

        if not hosts:
            report.results.append(self._run_on(name, base, None))
            return report

        for host in hosts:
            logger.info(f"Running '{name}' on {host.alias} ({host.hostname})")
            report.results.append(self._run_on(name, base.for_host(host), host.alias))
        return report

    def _run_on(self, name: str, context: ExecutionContext, alias: Optional[str]) -> HostOutcome:
        self._warnings = 0
        with log_context(host=alias or "local"):
            outcome = self.invoke(name, context)
        return HostOutcome(alias, outcome, self._warnings)

    def invoke(self, name: str, context: ExecutionContext) -> TaskOutcome:
        """Run a single task, its children and its hooks.

        The task stays on the invocation chain while its hooks run, so a
        hook leading back to the task is reported as a cycle.

        Raises:
            UnknownTaskError: If the task or one of its children is not registered
            CyclicTaskError: If the task is already on the invocation chain
            TaskFailedError: If the task or one of its success hooks fails fatally
        """
        task = self.registry.resolve(name)
        if name in self._stack:
            raise CyclicTaskError([*self._stack, name])

        failure: Optional[TaskFailedError] = None
        self._stack.append(name)
        try:
            with log_context(task=name):
                try:
                    with context.scope():
                        outcome = self._execute(task, context)
                except TaskFailedError as e:
                    outcome, failure = self._apply_policy(task, e, e.cause)
                except Exception as e:
                    wrapped = TaskFailedError(name, self._stack, e)
                    wrapped.__cause__ = e
                    outcome, failure = self._apply_policy(task, wrapped, e)

            if failure is not None:
                self._run_failure_hooks(name, context, failure)
                raise failure

            if outcome is TaskOutcome.SOFT_FAILED:
                self._warnings += 1
            for target in self.registry.hooks(name, HookEvent.SUCCESS):
                self._run_success_hook(name, target, context)
        finally:
            self._stack.pop()
        return outcome

    def _run_success_hook(self, name: str, target: str, context: ExecutionContext):
        try:
            self.invoke(target, context)
        except CyclicTaskError as e:
            raise TaskFailedError(name, self._stack, e) from e

    def _apply_policy(self, task: Task, failure: TaskFailedError, cause: BaseException):
        if task.best_effort and isinstance(cause, ExecutionError):
            logger.warning(f"Task '{task.name}' failed, continuing (best-effort): {cause}")
            return TaskOutcome.SOFT_FAILED, None
        if failure.task == task.name:
            logger.error(f"Task '{task.name}' failed: {cause}")
        return None, failure

    def _run_failure_hooks(self, name: str, context: ExecutionContext, failure: TaskFailedError):
        for target in self.registry.hooks(name, HookEvent.FAILURE):
            logger.info(f"Running failure hook '{target}' for '{name}'")
            try:
                self.invoke(target, context)
            except Exception as e:
                # keep the original failure
                logger.error(f"Failure hook '{target}' for '{name}' failed: {e}")

    # ── execution ─────────────────────────────────────────────────────

    def _execute(self, task: Task, context: ExecutionContext) -> TaskOutcome:
        logger.info(f"task {task.name}")

        if task.is_composite:
            for child in task.children:
                outcome = self.invoke(child, context)
                if outcome is TaskOutcome.SKIPPED and task.stop_on_skip:
                    logger.info(f"'{child}' was skipped, stopping '{task.name}'")
                    return TaskOutcome.SKIPPED
            return TaskOutcome.SUCCEEDED

        for gate in task.confirmations:
            if not self._confirm(gate, context):
                logger.info(f"Skipping '{task.name}': not confirmed")
                return TaskOutcome.SKIPPED

        returned = task.action(context)

        soft = [r for r in _results(returned) if r.soft_failure]
        if soft:
            for result in soft:
                logger.warning(
                    f"Task '{task.name}' failed with exit code {result.exit_code}, "
                    f"continuing: {result.command}"
                )
            return TaskOutcome.SOFT_FAILED
        return TaskOutcome.SUCCEEDED

    def _confirm(self, gate: Confirmation, context: ExecutionContext) -> bool:
        self.prompter.warn(gate.warning)
        if gate.expected is None:
            return self.prompter.confirm(gate.question)

        expected = context.render(gate.expected)
        answer = self.prompter.ask(gate.question)
        if answer != expected:
            logger.warning(f"'{answer}' does not match '{expected}'. Aborting")
            return False
        return True

    # ── inspection ────────────────────────────────────────────────────

    def plan(self, name: str) -> List[PlanStep]:
        """Expand *name* into the static order of tasks and hooks.

        Raises:
            UnknownTaskError: If a referenced task is not registered
            CyclicTaskError: If a task includes itself
        """
        steps: List[PlanStep] = []
        self._plan(name, 0, "task", [], steps)
        return steps

    def _plan(self, name: str, depth: int, relation: str, chain: List[str], steps: List[PlanStep]):
        task = self.registry.resolve(name)
        if name in chain:
            raise CyclicTaskError([*chain, name])
        steps.append(PlanStep(depth, name, relation, task.description))

        chain = [*chain, name]
        for child in task.children:
            self._plan(child, depth + 1, "task", chain, steps)
        for target in self.registry.hooks(name, HookEvent.SUCCESS):
            self._plan(target, depth + 1, "after", chain, steps)
        for target in self.registry.hooks(name, HookEvent.FAILURE):
            self._plan(target, depth + 1, "on failure", chain, steps)


def _results(returned: Any) -> List[CommandResult]:
    if isinstance(returned, CommandResult):
        return [returned]
    if isinstance(returned, (list, tuple)):
        return [r for r in returned if isinstance(r, CommandResult)]
    return []
