"""Deckhand runtime configuration and settings."""
import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class DeckhandConfig:
    """Runtime configuration for Deckhand operations.

    Attributes:
        command_timeout: Timeout in seconds for a single remote command (default: 3600)
        transfer_timeout: Timeout in seconds for an upload or download (default: 3600)
        local_timeout: Timeout in seconds for a single local command (default: 3600)
        soft_failure_marker: Text a best-effort command echoes on failure (default: flush_failed:)
        ssh_binary: SSH client executable (default: ssh)
        scp_binary: SCP client executable (default: scp)
    """

    # Timeouts are enforced by the transport, never by the orchestrator
    command_timeout: int = 3600  # database imports can take a while
    transfer_timeout: int = 3600
    local_timeout: int = 3600

    soft_failure_marker: str = "flush_failed:"

    ssh_binary: str = "ssh"
    scp_binary: str = "scp"

    @classmethod
    def from_env(cls) -> "DeckhandConfig":
        """Create config from environment variables.

        Environment variables:
            DECKHAND_COMMAND_TIMEOUT: Remote command timeout in seconds
            DECKHAND_TRANSFER_TIMEOUT: Transfer timeout in seconds
            DECKHAND_LOCAL_TIMEOUT: Local command timeout in seconds
            DECKHAND_SOFT_FAILURE_MARKER: Marker echoed by best-effort commands
            DECKHAND_SSH: SSH client executable
            DECKHAND_SCP: SCP client executable

        Returns:
            DeckhandConfig instance with values from environment or defaults
        """
        return cls(
            command_timeout=int(
                os.getenv("DECKHAND_COMMAND_TIMEOUT", cls.command_timeout)
            ),
            transfer_timeout=int(
                os.getenv("DECKHAND_TRANSFER_TIMEOUT", cls.transfer_timeout)
            ),
            local_timeout=int(
                os.getenv("DECKHAND_LOCAL_TIMEOUT", cls.local_timeout)
            ),
            soft_failure_marker=os.getenv(
                "DECKHAND_SOFT_FAILURE_MARKER", cls.soft_failure_marker
            ),
            ssh_binary=os.getenv("DECKHAND_SSH", cls.ssh_binary),
            scp_binary=os.getenv("DECKHAND_SCP", cls.scp_binary),
        )


# Global config instance (can be overridden)
_config: Optional[DeckhandConfig] = None


def get_config() -> DeckhandConfig:
    """Get the global Deckhand configuration.

    Returns:
        DeckhandConfig instance (creates from environment if not set)
    """
    global _config
    if _config is None:
        _config = DeckhandConfig.from_env()
    return _config


def set_config(config: Optional[DeckhandConfig]):
    """Set the global Deckhand configuration.

    Args:
        config: DeckhandConfig instance to use globally, or None to reload from env
    """
    global _config
    _config = config
