"""Shared test fixtures for Deckhand tests."""
from typing import List, Tuple

import pytest

from deckhand.core.config import DeckhandConfig
from deckhand.core.context import ExecutionContext
from deckhand.core.errors import TransferError
from deckhand.core.orchestrator import Orchestrator
from deckhand.core.prompts import Prompter
from deckhand.core.runner import CommandRunner
from deckhand.core.tasks import TaskRegistry
from deckhand.core.transport import Transport
from deckhand.hosts.registry import Host, HostRegistry
from deckhand.models import CommandResult


class RecordingTransport(Transport):
    """Transport that records calls and answers from a script.

    Responses are matched by substring, first match wins; unmatched
    commands succeed with empty output.
    """

    def __init__(self):
        self.calls: List[Tuple[str, ...]] = []
        self.responses: List[Tuple[str, int, str, str]] = []
        self.fail_downloads = False

    def respond(self, fragment: str, exit_code: int = 0, stdout: str = "", stderr: str = ""):
        self.responses.append((fragment, exit_code, stdout, stderr))

    @property
    def commands(self) -> List[str]:
        return [call[1] for call in self.calls if call[0] == "run"]

    def run(self, host, command, timeout=None):
        self.calls.append(("run", command))
        for fragment, exit_code, stdout, stderr in self.responses:
            if fragment in command:
                return CommandResult(command, stdout=stdout, stderr=stderr, exit_code=exit_code)
        return CommandResult(command)

    def download(self, host, remote_path, local_path, timeout=None):
        self.calls.append(("download", remote_path, local_path))
        if self.fail_downloads:
            raise TransferError(f"Copy {remote_path} -> {local_path} failed")

    def upload(self, host, local_path, remote_path, timeout=None):
        self.calls.append(("upload", local_path, remote_path))


class ScriptedPrompter(Prompter):
    """Prompter returning canned answers and recording the questions."""

    def __init__(self, confirm: bool = True, answer: str = ""):
        self.confirm_answer = confirm
        self.answer = answer
        self.questions: List[str] = []

    def confirm(self, question: str) -> bool:
        self.questions.append(question)
        return self.confirm_answer

    def ask(self, question: str) -> str:
        self.questions.append(question)
        return self.answer


@pytest.fixture
def config():
    return DeckhandConfig()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def runner(transport, config):
    return CommandRunner(transport=transport, config=config)


@pytest.fixture
def host():
    """Production host with a remote user and a custom port."""
    return Host(
        alias="prod",
        hostname="example.com",
        deploy_path="/var/www/site",
        remote_user="deploy",
        port=2222,
        labels={"stage": "prod"},
    )


@pytest.fixture
def hosts(host):
    staging = Host(
        alias="staging",
        hostname="staging.example.com",
        deploy_path="/var/www/staging",
        labels={"stage": "staging"},
    )
    return HostRegistry([host, staging], defaults={"repository": "git@example.com:site.git"})


@pytest.fixture
def registry():
    return TaskRegistry()


@pytest.fixture
def prompter():
    return ScriptedPrompter()


@pytest.fixture
def orchestrator(registry, runner, prompter):
    return Orchestrator(registry, runner=runner, prompter=prompter)


@pytest.fixture
def context(orchestrator, hosts, host) -> ExecutionContext:
    """Context bound to the prod host."""
    return orchestrator.context(hosts=hosts, host=host)

