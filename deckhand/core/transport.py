"""Remote transports used by the command runner."""
import subprocess
from abc import ABC, abstractmethod
from typing import List, Optional

from deckhand.core.config import DeckhandConfig, get_config
from deckhand.core.errors import RemoteExecutionError, TransferError
from deckhand.core.logger import get_logger
from deckhand.hosts.registry import Host
from deckhand.models import CommandResult

logger = get_logger(__name__)


def ssh_auth_args(host: Host) -> List[str]:
    """-i and -o arguments shared by ssh, scp and rsync for *host*."""
    args = []
    identity = host.config.get("identity_file")
    if identity:
        args.extend(["-i", str(identity)])
    for option in host.config.get("ssh_options") or []:
        args.extend(["-o", str(option)])
    return args


class Transport(ABC):
    """Abstract interface for reaching a remote host."""

    @abstractmethod
    def run(self, host: Host, command: str, timeout: Optional[int] = None) -> CommandResult:
        """Run a shell command on *host* and capture its output.

        Non-zero exit codes are reported in the result, not raised.

        Raises:
            RemoteExecutionError: If the transport itself fails (timeout, missing client)
        """
        pass

    @abstractmethod
    def download(self, host: Host, remote_path: str, local_path: str,
                 timeout: Optional[int] = None) -> None:
        """Copy *remote_path* on *host* to *local_path*.

        Raises:
            TransferError: On any I/O or transport fault
        """
        pass

    @abstractmethod
    def upload(self, host: Host, local_path: str, remote_path: str,
               timeout: Optional[int] = None) -> None:
        """Copy *local_path* to *remote_path* on *host*.

        Raises:
            TransferError: On any I/O or transport fault
        """
        pass


class SshTransport(Transport):
    """Transport shelling out to the system ssh and scp clients.

    Host config keys honored:
        identity_file: Private key passed with -i
        ssh_options: List of -o options, e.g. ["StrictHostKeyChecking=accept-new"]
    """

    def __init__(self, config: Optional[DeckhandConfig] = None):
        self.config = config or get_config()

    def ssh_command(self, host: Host, command: str) -> List[str]:
        return [
            self.config.ssh_binary,
            "-p", str(host.port),
            *ssh_auth_args(host),
            host.connection_string,
            command,
        ]

    def scp_command(self, host: Host, source: str, destination: str) -> List[str]:
        return [
            self.config.scp_binary,
            "-P", str(host.port),
            *ssh_auth_args(host),
            source,
            destination,
        ]

    def run(self, host: Host, command: str, timeout: Optional[int] = None) -> CommandResult:
        cmd = self.ssh_command(host, command)
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout or self.config.command_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise RemoteExecutionError(
                f"Command timed out after {e.timeout}s on {host.alias}: {command}",
                host=host.alias,
            ) from e
        except OSError as e:
            raise RemoteExecutionError(
                f"Could not start {self.config.ssh_binary}: {e}",
                host=host.alias,
            ) from e

        return CommandResult(
            command=command,
            stdout=completed.stdout,
            stderr=completed.stderr,
            exit_code=completed.returncode,
        )

    def _copy(self, host: Host, source: str, destination: str, timeout: Optional[int]) -> None:
        cmd = self.scp_command(host, source, destination)
        try:
            subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout or self.config.transfer_timeout,
            )
        except subprocess.CalledProcessError as e:
            message = (e.stderr or "").strip() or f"exit code {e.returncode}"
            raise TransferError(f"Copy {source} -> {destination} failed: {message}") from e
        except subprocess.TimeoutExpired as e:
            raise TransferError(
                f"Copy {source} -> {destination} timed out after {e.timeout}s"
            ) from e
        except OSError as e:
            raise TransferError(f"Could not start {self.config.scp_binary}: {e}") from e

    def download(self, host: Host, remote_path: str, local_path: str,
                 timeout: Optional[int] = None) -> None:
        self._copy(host, f"{host.connection_string}:{remote_path}", local_path, timeout)

    def upload(self, host: Host, local_path: str, remote_path: str,
               timeout: Optional[int] = None) -> None:
        self._copy(host, local_path, f"{host.connection_string}:{remote_path}", timeout)
