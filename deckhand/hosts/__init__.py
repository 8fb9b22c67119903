"""Host configuration for Deckhand."""
from deckhand.hosts.registry import Host, HostRegistry

__all__ = [
    'Host',
    'HostRegistry',
]
