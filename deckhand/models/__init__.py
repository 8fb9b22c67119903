"""Data models for Deckhand."""
from deckhand.models.result import CommandResult

__all__ = [
    'CommandResult',
]
