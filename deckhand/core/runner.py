"""Command runner for local and remote shell commands.

Every command is rendered against the execution context before a process is
spawned, so unresolved placeholders never reach the shell.
"""
import re
import subprocess
from pathlib import Path
from typing import Optional, Union

from deckhand.core.config import DeckhandConfig, get_config
from deckhand.core.context import ExecutionContext
from deckhand.core.errors import (
    LocalExecutionError,
    RemoteExecutionError,
    TransferError,
)
from deckhand.core.logger import get_logger
from deckhand.core.template import CommandTemplate, as_template
from deckhand.core.transport import SshTransport, Transport
from deckhand.models import CommandResult

logger = get_logger(__name__)

Command = Union[str, CommandTemplate]


class CommandRunner:
    """Runs shell commands locally or on the context's host."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        config: Optional[DeckhandConfig] = None,
        mock: bool = False,
    ):
        self.config = config or get_config()
        self.transport = transport or SshTransport(self.config)
        self.mock = mock

    # ── local ─────────────────────────────────────────────────────────

    def run_local(
        self,
        command: Command,
        context: Optional[ExecutionContext] = None,
        tolerate: bool = False,
    ) -> CommandResult:
        """Run a command on the local machine.

        Args:
            command: Command string or template
            context: Context used to render placeholders (optional for plain strings)
            tolerate: Return non-zero results instead of raising

        Raises:
            UnresolvedPlaceholderError: If the command references unbound names
            LocalExecutionError: If the command exits non-zero and tolerate is False
        """
        rendered = context.render(command) if context is not None else str(command)

        if self.mock:
            logger.info(f"MOCK: Would run locally: {rendered}")
            return CommandResult(command=rendered)

        logger.debug(f"[local] {rendered}")
        try:
            completed = subprocess.run(
                rendered,
                shell=True,
                capture_output=True,
                text=True,
                timeout=self.config.local_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise LocalExecutionError(
                f"Local command timed out after {e.timeout}s: {rendered}"
            ) from e

        result = CommandResult(
            command=rendered,
            stdout=completed.stdout,
            stderr=completed.stderr,
            exit_code=completed.returncode,
        )
        if result.exit_code != 0 and not tolerate:
            raise LocalExecutionError(
                f"Local command failed with exit code {result.exit_code}: {rendered}"
                + _error_tail(result),
                result=result,
            )
        return result

    # ── remote ────────────────────────────────────────────────────────

    def run_remote(
        self,
        command: Command,
        context: ExecutionContext,
        tolerate: bool = False,
    ) -> CommandResult:
        """Run a command on the context's host.

        The command runs inside the context's ``cwd`` when one is bound
        (see ``ExecutionContext.within``).

        Raises:
            NoHostSelectedError: If the context has no host
            UnresolvedPlaceholderError: If the command references unbound names
            RemoteExecutionError: If the command exits non-zero and tolerate is False
        """
        host = context.require_host()
        rendered = context.render(command)
        cwd = context.get("cwd")
        if cwd:
            rendered = f"cd {cwd} && ({rendered})"

        if self.mock:
            logger.info(f"MOCK: Would run on {host.alias}: {rendered}")
            return CommandResult(command=rendered)

        logger.debug(f"[{host.alias}] {rendered}")
        result = self.transport.run(host, rendered, timeout=self.config.command_timeout)

        if result.exit_code != 0 and not tolerate:
            raise RemoteExecutionError(
                f"Command failed on {host.alias} with exit code {result.exit_code}: {rendered}"
                + _error_tail(result),
                result=result,
                host=host.alias,
            )
        return result

    def run_best_effort(
        self,
        command: Command,
        context: ExecutionContext,
        marker: Optional[str] = None,
    ) -> CommandResult:
        """Run a remote command whose failure must not abort the run.

        The command is suffixed with ``|| echo "<marker>$?"`` and the result
        carries ``soft_failure=True`` when the marker shows up in stdout or the
        command still exits non-zero. The orchestrator turns such results into
        warnings instead of failures.
        """
        marker = marker or self.config.soft_failure_marker
        template = as_template(command)
        guarded = CommandTemplate.parse(f'{template.source} || echo "{marker}$?"')

        result = self.run_remote(guarded, context, tolerate=True)
        return _mark_soft_failure(result, marker)

    def test(self, command: Command, context: ExecutionContext) -> bool:
        """Return True if a remote shell test exits 0."""
        result = self.run_remote(command, context, tolerate=True)
        return result.exit_code == 0

    # ── transfers ─────────────────────────────────────────────────────

    def download(self, remote_path: Command, local_path: Command, context: ExecutionContext) -> None:
        """Copy a remote file to the local machine. The remote file is kept."""
        host = context.require_host()
        remote = context.render(remote_path)
        local = context.render(local_path)

        if self.mock:
            logger.info(f"MOCK: Would download {host.alias}:{remote} -> {local}")
            return

        logger.debug(f"[{host.alias}] download {remote} -> {local}")
        if not Path(local).parent.exists():
            raise TransferError(f"Local directory does not exist: {Path(local).parent}")
        self.transport.download(host, remote, local, timeout=self.config.transfer_timeout)

    def upload(self, local_path: Command, remote_path: Command, context: ExecutionContext) -> None:
        """Copy a local file to the remote host. The local file is kept."""
        host = context.require_host()
        local = context.render(local_path)
        remote = context.render(remote_path)

        if self.mock:
            logger.info(f"MOCK: Would upload {local} -> {host.alias}:{remote}")
            return

        logger.debug(f"[{host.alias}] upload {local} -> {remote}")
        if not Path(local).is_file():
            raise TransferError(f"Local file not found: {local}")
        self.transport.upload(host, local, remote, timeout=self.config.transfer_timeout)


def _mark_soft_failure(result: CommandResult, marker: str) -> CommandResult:
    match = re.search(re.escape(marker) + r"(\d+)", result.stdout)
    if match:
        result.soft_failure = True
        result.exit_code = int(match.group(1))
    elif result.exit_code != 0:
        result.soft_failure = True
    return result


def _error_tail(result: CommandResult) -> str:
    detail = result.stderr.strip() or result.stdout.strip()
    if not detail:
        return ""
    lines = detail.splitlines()[-5:]
    return "\n" + "\n".join(lines)
