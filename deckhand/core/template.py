"""Command templates with named placeholders.

A template such as ``cd {{release_path}} && {{bin/php}} vendor/bin/typo3``
is parsed once into an ordered tuple of literal segments and placeholders.
Rendering resolves every placeholder against a lookup before any text is
produced, so a missing value always surfaces as a single
``UnresolvedPlaceholderError`` listing every unbound name.
"""
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Tuple, Union

from deckhand.core.errors import UnresolvedPlaceholderError

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_./:-]+)\s*\}\}")

# Sentinel returned by lookups for names without a bound value
MISSING = object()


@dataclass(frozen=True)
class Literal:
    """Literal text copied verbatim into the rendered command."""
    text: str


@dataclass(frozen=True)
class Placeholder:
    """Named value resolved from the execution context."""
    name: str


Segment = Union[Literal, Placeholder]


@dataclass(frozen=True)
class CommandTemplate:
    """Ordered list of literal segments and named placeholders."""

    source: str
    segments: Tuple[Segment, ...]

    @classmethod
    def parse(cls, source: str) -> "CommandTemplate":
        """Parse ``{{name}}`` placeholders out of a command string."""
        segments: List[Segment] = []
        position = 0
        for match in PLACEHOLDER_PATTERN.finditer(source):
            if match.start() > position:
                segments.append(Literal(source[position:match.start()]))
            segments.append(Placeholder(match.group(1)))
            position = match.end()
        if position < len(source):
            segments.append(Literal(source[position:]))
        return cls(source=source, segments=tuple(segments))

    @property
    def names(self) -> Tuple[str, ...]:
        """Placeholder names in order of first appearance."""
        seen = []
        for segment in self.segments:
            if isinstance(segment, Placeholder) and segment.name not in seen:
                seen.append(segment.name)
        return tuple(seen)

    def render(self, lookup: Callable[[str], Any]) -> str:
        """Render the template.

        Args:
            lookup: Callable returning the value bound to a name, or MISSING

        Returns:
            Rendered command string

        Raises:
            UnresolvedPlaceholderError: If any placeholder has no bound value
        """
        values = {}
        missing = []
        for name in self.names:
            value = lookup(name)
            if value is MISSING or value is None:
                missing.append(name)
            else:
                values[name] = value

        if missing:
            raise UnresolvedPlaceholderError(missing, self.source)

        parts = []
        for segment in self.segments:
            if isinstance(segment, Literal):
                parts.append(segment.text)
            else:
                parts.append(_format_value(values[segment.name]))
        return "".join(parts)

    def __str__(self) -> str:
        return self.source


def as_template(command: Union[str, CommandTemplate]) -> CommandTemplate:
    """Return *command* as a CommandTemplate, parsing strings."""
    if isinstance(command, CommandTemplate):
        return command
    return CommandTemplate.parse(command)


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(item) for item in value)
    return str(value)
