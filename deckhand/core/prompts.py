"""Confirmation gates for destructive tasks."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import typer

from deckhand.core.logger import console


@dataclass(frozen=True)
class Confirmation:
    """A yes/no question, or a typed value that must match exactly.

    Attributes:
        question: Text shown to the operator
        expected: Template the typed answer must equal (e.g. "{{hostname}}");
            None for a plain yes/no confirmation
        warning: Banner lines printed before asking
    """
    question: str
    expected: Optional[str] = None
    warning: Tuple[str, ...] = ()


class Prompter(ABC):
    """Source of operator answers."""

    @abstractmethod
    def confirm(self, question: str) -> bool:
        pass

    @abstractmethod
    def ask(self, question: str) -> str:
        pass

    def warn(self, lines: Tuple[str, ...]) -> None:
        for line in lines:
            console.print(f"[bold yellow]{line}[/bold yellow]")


class TyperPrompter(Prompter):
    """Interactive prompts on the terminal.

    Args:
        assume_yes: Answer every yes/no question with yes (--yes flag).
            Typed confirmations are still asked.
    """

    def __init__(self, assume_yes: bool = False):
        self.assume_yes = assume_yes

    def confirm(self, question: str) -> bool:
        if self.assume_yes:
            return True
        return typer.confirm(question, default=False)

    def ask(self, question: str) -> str:
        return typer.prompt(question, default="", show_default=False)


class NonInteractivePrompter(Prompter):
    """Rejects every confirmation, for runs without a terminal."""

    def __init__(self, assume_yes: bool = False):
        self.assume_yes = assume_yes

    def confirm(self, question: str) -> bool:
        return self.assume_yes

    def ask(self, question: str) -> str:
        return ""
