"""Host registry loaded from a YAML hosts file.

Expected format::

    config:                 # optional, global defaults for every host
      bin/php: php8.2
    hosts:
      prod:
        hostname: example.com
        remote_user: deploy
        deploy_path: /var/www/project
        port: 22            # optional
        labels:             # optional, used by 'key=value' selectors
          stage: prod
        bin/php: /usr/bin/php8.1   # any other key is a config override
"""
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

import yaml

from deckhand.core.errors import ConfigParseError, UnknownHostError
from deckhand.core.logger import get_logger

logger = get_logger(__name__)

# Keys with a dedicated Host attribute; everything else is a config override
HOST_FIELDS = ("hostname", "remote_user", "deploy_path", "port", "labels")


@dataclass(frozen=True)
class Host:
    """A configured remote deployment target."""

    alias: str
    hostname: str
    deploy_path: str
    remote_user: Optional[str] = None
    port: int = 22
    labels: Mapping[str, str] = field(default_factory=dict)
    config: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Hosts are immutable during a run
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))

    @property
    def connection_string(self) -> str:
        """user@hostname, or just hostname without a remote user."""
        if self.remote_user:
            return f"{self.remote_user}@{self.hostname}"
        return self.hostname

    def fields(self) -> Dict[str, Any]:
        """Built-in values exposed to command templates."""
        values = {
            "alias": self.alias,
            "hostname": self.hostname,
            "deploy_path": self.deploy_path,
            "port": self.port,
        }
        if self.remote_user:
            values["remote_user"] = self.remote_user
        return values

    def matches(self, selector: str) -> bool:
        """True if *selector* is this host's alias or a matching key=value label."""
        if "=" in selector:
            key, _, value = selector.partition("=")
            return str(self.labels.get(key.strip())) == value.strip()
        return selector == self.alias


class HostRegistry:
    """Read-only collection of hosts keyed by alias."""

    def __init__(self, hosts: Iterable[Host] = (), defaults: Optional[Mapping[str, Any]] = None):
        self._hosts: Dict[str, Host] = {}
        for host in hosts:
            self._hosts[host.alias] = host
        self.defaults: Dict[str, Any] = dict(defaults or {})

    @classmethod
    def load(cls, source: Union[str, Path]) -> Optional["HostRegistry"]:
        """Load hosts from a YAML file.

        Args:
            source: Path to the hosts file

        Returns:
            Populated registry, or None when the file does not exist

        Raises:
            ConfigParseError: If the file exists but is malformed
        """
        path = Path(source)
        if not path.exists():
            logger.debug(f"Hosts file not found: {path}")
            return None

        try:
            with open(path) as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigParseError(f"Invalid YAML in {path}: {e}") from e

        registry = cls.from_dict(raw, source=str(path))
        logger.debug(f"Loaded {len(registry)} host(s) from {path}")
        return registry

    @classmethod
    def from_dict(cls, raw: Any, source: str = "<hosts>") -> "HostRegistry":
        """Build a registry from already-parsed host definitions."""
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ConfigParseError(f"{source}: top level must be a mapping")

        defaults = raw.get("config") or {}
        if not isinstance(defaults, dict):
            raise ConfigParseError(f"{source}: 'config' must be a mapping")

        hosts_section = raw.get("hosts") or {}
        if not isinstance(hosts_section, dict):
            raise ConfigParseError(f"{source}: 'hosts' must be a mapping of alias -> host")

        hosts = [
            _parse_host(str(alias), definition, source)
            for alias, definition in hosts_section.items()
        ]
        return cls(hosts, defaults=defaults)

    def resolve(self, alias: str) -> Host:
        try:
            return self._hosts[alias]
        except KeyError:
            raise UnknownHostError(alias) from None

    def select(self, selectors: Iterable[str]) -> List[Host]:
        """Return hosts matching any selector, in registry order.

        Args:
            selectors: Host aliases or key=value label filters

        Raises:
            UnknownHostError: If a plain alias is not registered
        """
        selectors = list(selectors)
        for selector in selectors:
            if "=" not in selector and selector not in self._hosts:
                raise UnknownHostError(selector)

        return [
            host for host in self._hosts.values()
            if any(host.matches(selector) for selector in selectors)
        ]

    def aliases(self) -> List[str]:
        return list(self._hosts)

    def __contains__(self, alias: str) -> bool:
        return alias in self._hosts

    def __iter__(self) -> Iterator[Host]:
        return iter(self._hosts.values())

    def __len__(self) -> int:
        return len(self._hosts)


def _parse_host(alias: str, definition: Any, source: str) -> Host:
    if definition is None:
        definition = {}
    if not isinstance(definition, dict):
        raise ConfigParseError(f"{source}: host '{alias}' must be a mapping")

    if not definition.get("deploy_path"):
        raise ConfigParseError(f"{source}: host '{alias}' is missing 'deploy_path'")

    labels = definition.get("labels") or {}
    if not isinstance(labels, dict):
        raise ConfigParseError(f"{source}: host '{alias}' labels must be a mapping")

    try:
        port = int(definition.get("port", 22))
    except (TypeError, ValueError):
        raise ConfigParseError(
            f"{source}: host '{alias}' has invalid port {definition.get('port')!r}"
        ) from None

    overrides = {k: v for k, v in definition.items() if k not in HOST_FIELDS}

    return Host(
        alias=alias,
        hostname=str(definition.get("hostname") or alias),
        deploy_path=str(definition["deploy_path"]).rstrip("/") or "/",
        remote_user=definition.get("remote_user"),
        port=port,
        labels={str(k): str(v) for k, v in labels.items()},
        config=overrides,
    )
