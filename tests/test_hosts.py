"""Tests for the host registry."""
import pytest

from deckhand.core.errors import ConfigParseError, UnknownHostError
from deckhand.hosts.registry import Host, HostRegistry

HOSTS_YAML = """
config:
  repository: git@example.com:site.git
  bin/php: php8.2

hosts:
  prod:
    hostname: example.com
    remote_user: deploy
    deploy_path: /var/www/site/
    port: 2222
    labels:
      stage: prod
    bin/php: /usr/bin/php8.1
  staging:
    hostname: staging.example.com
    deploy_path: /var/www/staging
    labels:
      stage: staging
  review:
    deploy_path: /var/www/review
    labels:
      stage: staging
"""


@pytest.fixture
def hosts_file(tmp_path):
    path = tmp_path / ".hosts.yaml"
    path.write_text(HOSTS_YAML)
    return path


class TestLoad:
    """Test loading hosts from YAML."""

    def test_load(self, hosts_file):
        registry = HostRegistry.load(hosts_file)

        assert registry.aliases() == ["prod", "staging", "review"]
        prod = registry.resolve("prod")
        assert prod.hostname == "example.com"
        assert prod.deploy_path == "/var/www/site"
        assert prod.port == 2222
        assert prod.connection_string == "deploy@example.com"
        assert prod.config == {"bin/php": "/usr/bin/php8.1"}
        assert registry.defaults["repository"] == "git@example.com:site.git"

    def test_hostname_defaults_to_alias(self, hosts_file):
        review = HostRegistry.load(hosts_file).resolve("review")
        assert review.hostname == "review"
        assert review.port == 22
        assert review.connection_string == "review"

    def test_missing_file(self, tmp_path):
        assert HostRegistry.load(tmp_path / "nope.yaml") is None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "hosts.yml"
        path.write_text("")
        assert len(HostRegistry.load(path)) == 0

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "hosts.yml"
        path.write_text("hosts: [unclosed")
        with pytest.raises(ConfigParseError, match="Invalid YAML"):
            HostRegistry.load(path)

    @pytest.mark.parametrize("raw, message", [
        (["prod"], "top level must be a mapping"),
        ({"hosts": ["prod"]}, "mapping of alias"),
        ({"config": "x"}, "'config' must be a mapping"),
        ({"hosts": {"prod": {"hostname": "x"}}}, "missing 'deploy_path'"),
        ({"hosts": {"prod": {"deploy_path": "/srv", "port": "ssh"}}}, "invalid port"),
        ({"hosts": {"prod": {"deploy_path": "/srv", "labels": ["a"]}}}, "labels must be a mapping"),
    ])
    def test_malformed(self, raw, message):
        with pytest.raises(ConfigParseError, match=message):
            HostRegistry.from_dict(raw)


class TestSelect:
    """Test host selection."""

    @pytest.fixture
    def registry(self, hosts_file):
        return HostRegistry.load(hosts_file)

    def test_by_alias(self, registry):
        assert [h.alias for h in registry.select(["staging"])] == ["staging"]

    def test_by_label_in_registry_order(self, registry):
        assert [h.alias for h in registry.select(["stage=staging"])] == ["staging", "review"]

    def test_mixed_selectors_deduplicated(self, registry):
        selected = registry.select(["review", "stage=staging", "prod"])
        assert [h.alias for h in selected] == ["prod", "staging", "review"]

    def test_unknown_alias(self, registry):
        with pytest.raises(UnknownHostError) as exc_info:
            registry.select(["production"])
        assert exc_info.value.alias == "production"

    def test_unmatched_label(self, registry):
        assert registry.select(["stage=qa"]) == []


class TestHost:
    """Test the Host value object."""

    def test_fields(self):
        host = Host(alias="prod", hostname="example.com", deploy_path="/srv")
        assert host.fields() == {
            "alias": "prod",
            "hostname": "example.com",
            "deploy_path": "/srv",
            "port": 22,
        }

    def test_immutable(self):
        host = Host(alias="prod", hostname="example.com", deploy_path="/srv", labels={"a": "b"})
        with pytest.raises(TypeError):
            host.labels["a"] = "c"
