"""Command execution result model."""
from dataclasses import dataclass


@dataclass
class CommandResult:
    """Captured output of a single local or remote command."""
    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    soft_failure: bool = False  # set only by the best-effort adapter

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.soft_failure

    @property
    def output(self) -> str:
        """Stripped standard output."""
        return self.stdout.strip()

    def __str__(self) -> str:
        return self.output
