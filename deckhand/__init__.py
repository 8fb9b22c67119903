"""Deckhand - task orchestration for release deployments over SSH."""

__version__ = "0.1.0"
