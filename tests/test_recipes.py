"""Tests for the shipped deployment and CMS recipes."""
import logging
from unittest.mock import MagicMock, patch

import pytest

from deckhand.core.errors import LocalExecutionError, RemoteExecutionError, TaskFailedError, TransferError
from deckhand.core.orchestrator import Orchestrator, TaskOutcome
from deckhand.hosts.registry import Host
from deckhand.recipes import build_registry

RELEASE = "cat /var/www/site/.dep/latest_release"


@pytest.fixture
def deckhand(runner, prompter):
    return Orchestrator(build_registry(), runner=runner, prompter=prompter)


@pytest.fixture
def local(tmp_path, monkeypatch):
    """Patch local commands; every call succeeds unless told otherwise."""
    monkeypatch.chdir(tmp_path)
    failing = []

    def fake_run(command, **kwargs):
        code = 1 if any(fragment in command for fragment in failing) else 0
        return MagicMock(stdout="", stderr="", returncode=code)

    with patch("deckhand.core.runner.subprocess.run", side_effect=fake_run) as mock_run:
        mock_run.failing = failing
        yield mock_run


def local_commands(mock_run):
    return [c.args[0] for c in mock_run.call_args_list]


def run(deckhand, hosts, host, name):
    return deckhand.run(name, [host], deckhand.context(hosts=hosts))


def index_of(commands, fragment):
    for i, command in enumerate(commands):
        if fragment in command:
            return i
    raise AssertionError(f"no command containing {fragment!r}")


class TestDeploy:
    """Test the full deploy pipeline."""

    def test_step_order(self, deckhand, transport, hosts, host):
        transport.respond(RELEASE, stdout="5\n")

        report = run(deckhand, hosts, host, "deploy")

        assert report.results[0].outcome is TaskOutcome.SUCCEEDED
        commands = transport.commands
        order = [
            "mkdir -p /var/www/site",
            "deploy.lock ]",
            "git clone --depth 1 --branch main git@example.com:site.git /var/www/site/releases/5",
            "ln -sfn /var/www/site/shared/.env /var/www/site/releases/5/.env",
            "chmod -R 0775 var",
            "composer install",
            "vendor/bin/typo3 database:updateschema safe",
            "vendor/bin/typo3 language:update",
            "vendor/bin/typo3 cache:flush",
            "vendor/bin/typo3 cache:warmup",
            "ln -sfn releases/5 current.tmp",
            "opcache:reset",
            "apcu:cache:clear",
            "stat:clear",
            "rm -f /var/www/site/.dep/deploy.lock",
            "head -n -3",
        ]
        positions = [index_of(commands, fragment) for fragment in order]
        assert positions == sorted(positions)

    def test_console_runs_in_release_path(self, deckhand, transport, hosts, host):
        transport.respond(RELEASE, stdout="5\n")
        run(deckhand, hosts, host, "deploy")
        command = transport.commands[index_of(transport.commands, "cache:warmup")]
        assert command == "cd /var/www/site/releases/5 && php vendor/bin/typo3 cache:warmup"

    def test_failure_unlocks(self, deckhand, transport, hosts, host):
        transport.respond(RELEASE, stdout="5\n")
        transport.respond("composer install", exit_code=1, stderr="Your lock file is out of date")

        with pytest.raises(TaskFailedError) as exc_info:
            run(deckhand, hosts, host, "deploy")

        assert exc_info.value.task == "deploy:vendors"
        assert exc_info.value.chain == ("deploy", "deploy:vendors")
        assert isinstance(exc_info.value.cause, RemoteExecutionError)
        commands = transport.commands
        assert [c for c in commands if "deploy.lock" in c and "rm -f" in c] == [
            "rm -f /var/www/site/.dep/deploy.lock"
        ]
        assert not any("current.tmp" in c for c in commands)

    def test_lock_held(self, deckhand, transport, hosts, host):
        transport.respond("then echo locked", stdout="locked\n")

        with pytest.raises(TaskFailedError) as exc_info:
            run(deckhand, hosts, host, "deploy")

        assert exc_info.value.task == "deploy:lock"
        assert "deploy:unlock prod" in str(exc_info.value.cause)
        assert not any("git clone" in c for c in transport.commands)

    def test_cache_flush_failure_is_soft(self, deckhand, transport, hosts, host, caplog):
        transport.respond(RELEASE, stdout="5\n")
        transport.respond("opcache:reset", stdout="flush_failed:127\n")

        with caplog.at_level(logging.WARNING):
            report = run(deckhand, hosts, host, "deploy")

        assert report.results[0].outcome is TaskOutcome.SUCCEEDED
        assert report.warnings == 1
        assert "cache:flush:opcache" in caplog.text
        assert index_of(transport.commands, "head -n -3") > index_of(transport.commands, "opcache:reset")

    def test_missing_repository(self, deckhand, transport, host):
        with pytest.raises(TaskFailedError) as exc_info:
            deckhand.run("deploy", [host])
        assert exc_info.value.cause.names == ("repository",)
        assert not any("git clone" in c for c in transport.commands)

    def test_falls_back_to_current_path(self, deckhand, transport, hosts, host):
        transport.respond("[ -d /var/www/site/releases/", exit_code=1)
        transport.respond(RELEASE, stdout="5\n")

        run(deckhand, hosts, host, "cache:warmup")

        assert transport.commands[-1] == "cd /var/www/site/current && php vendor/bin/typo3 cache:warmup"


class TestDatabase:
    """Test database transfer tasks."""

    def test_download(self, deckhand, transport, hosts, host, local, tmp_path):
        transport.respond(RELEASE, stdout="5\n")

        run(deckhand, hosts, host, "database:download")

        assert ("download", "/var/www/site/releases/5/dump.sql", "dump.sql") in transport.calls
        assert "rm /var/www/site/releases/5/dump.sql" in transport.commands
        gzip = local_commands(local)[-1]
        assert gzip.startswith("gzip -c dump.sql > database/prod/")
        assert "mkdir -p database/staging" in local_commands(local)

    def test_download_creates_host_dir_without_registry(self, deckhand, transport, host, local):
        transport.respond(RELEASE, stdout="5\n")

        deckhand.run("database:download", [host])

        commands = local_commands(local)
        assert index_of(commands, "mkdir -p database/prod") < index_of(commands, "gzip -c dump.sql")

    def test_pull_imports_and_cleans_up(self, deckhand, transport, hosts, host, local, tmp_path):
        transport.respond(RELEASE, stdout="5\n")
        (tmp_path / "dump.sql").write_text("-- dump")

        run(deckhand, hosts, host, "database:pull")

        commands = local_commands(local)
        assert index_of(commands, "gzip -c local.sql") < index_of(commands, "database:import")
        assert commands[-3:] == [
            "./vendor/bin/typo3 database:updateschema safe",
            "./vendor/bin/typo3 language:update",
            "./vendor/bin/typo3 cache:flush",
        ]
        assert not (tmp_path / "dump.sql").exists()

    def test_pull_cleans_up_when_import_fails(self, deckhand, transport, hosts, host, local, tmp_path):
        transport.respond(RELEASE, stdout="5\n")
        local.failing.append("database:import")
        (tmp_path / "dump.sql").write_text("-- dump")

        with pytest.raises(TaskFailedError) as exc_info:
            run(deckhand, hosts, host, "database:pull")

        assert isinstance(exc_info.value.cause, LocalExecutionError)
        assert "rm /var/www/site/releases/5/dump.sql" in transport.commands
        assert not (tmp_path / "dump.sql").exists()
        assert not any("cache:flush" in c for c in local_commands(local))

    def test_remote_dump_removed_when_download_fails(self, deckhand, transport, hosts, host, local):
        transport.respond(RELEASE, stdout="5\n")
        transport.fail_downloads = True

        with pytest.raises(TaskFailedError) as exc_info:
            run(deckhand, hosts, host, "database:pull")

        assert isinstance(exc_info.value.cause, TransferError)
        assert "rm /var/www/site/releases/5/dump.sql" in transport.commands

    def test_remove_failure_is_not_fatal(self, deckhand, transport, hosts, host, local, caplog):
        transport.respond(RELEASE, stdout="5\n")
        transport.respond("rm /var/www/site", exit_code=1, stderr="Permission denied")

        with caplog.at_level(logging.WARNING):
            report = run(deckhand, hosts, host, "database:download")

        assert report.results[0].outcome is TaskOutcome.SUCCEEDED
        assert "Permission denied" in caplog.text

    def test_push(self, deckhand, transport, prompter, hosts, host, local, tmp_path):
        transport.respond(RELEASE, stdout="5\n")
        prompter.answer = "example.com"
        (tmp_path / "local.sql").write_text("-- local")

        report = run(deckhand, hosts, host, "database:push")

        assert report.results[0].outcome is TaskOutcome.SUCCEEDED
        assert ("upload", "local.sql", "/var/www/site/releases/5/local.sql") in transport.calls
        commands = transport.commands
        assert index_of(commands, "database:import") < index_of(commands, "rm /var/www/site/releases/5/local.sql")
        assert index_of(commands, "rm /var/www/site/releases/5/local.sql") < index_of(commands, "cache:warmup")
        assert not (tmp_path / "local.sql").exists()
        # backup of the remote database first
        assert transport.calls.index(("download", "/var/www/site/releases/5/dump.sql", "dump.sql")) < \
            transport.calls.index(("upload", "local.sql", "/var/www/site/releases/5/local.sql"))

    def test_push_requires_typed_hostname(self, deckhand, transport, prompter, hosts, host, local):
        prompter.answer = "prod"

        report = run(deckhand, hosts, host, "database:push")

        assert report.results[0].outcome is TaskOutcome.SKIPPED
        assert transport.calls == []
        assert local.call_count == 0


class TestFilesAndBackup:
    """Test file sync and project backup."""

    def test_files_pull(self, deckhand, transport, hosts, host, local):
        run(deckhand, hosts, host, "files:pull")

        assert local_commands(local) == [
            "rsync -avz -e 'ssh -p 2222' "
            "deploy@example.com:/var/www/site/current/public/fileadmin/ public/fileadmin/"
        ]
        assert transport.calls == []

    def test_files_push_with_typed_hostname(self, deckhand, prompter, hosts, host, local):
        prompter.answer = "example.com"

        report = run(deckhand, hosts, host, "files:push")

        assert report.results[0].outcome is TaskOutcome.SUCCEEDED
        assert local_commands(local) == [
            "rsync -avz -e 'ssh -p 2222' public/fileadmin/ "
            "deploy@example.com:/var/www/site/current/public/fileadmin/ --bwlimit=2000"
        ]

    def test_files_sync_uses_host_ssh_settings(self, deckhand, hosts, local):
        keyed = Host(
            alias="prod",
            hostname="example.com",
            deploy_path="/var/www/site",
            remote_user="deploy",
            port=2222,
            config={
                "identity_file": "/home/deploy/.ssh/id_ed25519",
                "ssh_options": ["StrictHostKeyChecking=accept-new"],
            },
        )

        run(deckhand, hosts, keyed, "files:pull")

        assert local_commands(local) == [
            "rsync -avz -e "
            "'ssh -p 2222 -i /home/deploy/.ssh/id_ed25519 -o StrictHostKeyChecking=accept-new' "
            "deploy@example.com:/var/www/site/current/public/fileadmin/ public/fileadmin/"
        ]

    def test_files_push_rejected(self, deckhand, prompter, hosts, host, local):
        prompter.confirm_answer = False
        report = run(deckhand, hosts, host, "files:push")
        assert report.results[0].outcome is TaskOutcome.SKIPPED
        assert local.call_count == 0

    def test_project_backup(self, deckhand, transport, hosts, host, local, tmp_path):
        (tmp_path / "backup").mkdir()
        transport.respond("cat .dep/latest_release || echo 0", stdout="5\n")
        transport.respond(RELEASE, stdout="5\n")

        run(deckhand, hosts, host, "project:backup")

        downloads = [call for call in transport.calls if call[0] == "download"]
        assert downloads == [
            ("download", "/var/www/site/5.tar.gz", "backup/5.tar.gz"),
            ("download", "/var/www/site/shared.tar.gz", "backup/shared.tar.gz"),
            ("download", "/var/www/site/releases/5/dump.sql", "backup/dump.sql"),
        ]
        removals = [c for c in transport.commands if c.startswith("rm ")]
        assert removals == [
            "rm /var/www/site/5.tar.gz",
            "rm /var/www/site/shared.tar.gz",
            "rm /var/www/site/releases/5/dump.sql",
        ]
        assert local_commands(local)[-1] == "gzip -f backup/dump.sql"

    def test_sorting_in_page_skips_without_extension(self, deckhand, transport, hosts, host):
        transport.respond(RELEASE, stdout="5\n")
        transport.respond("b13/container", stdout="0\n")

        run(deckhand, hosts, host, "command:sorting-in-page")

        assert not any("container:sorting-in-page" in c for c in transport.commands)

    def test_sorting_in_page_with_container_extension(self, deckhand, transport, hosts, host):
        transport.respond(RELEASE, stdout="5\n")
        transport.respond("b13/container", stdout="1\n")

        run(deckhand, hosts, host, "command:sorting-in-page")

        assert transport.commands[-1] == (
            "cd /var/www/site/releases/5 && php vendor/bin/typo3 container:sorting-in-page --apply"
        )


class TestRegistry:
    """Test the shipped registry."""

    def test_validates(self):
        registry = build_registry()
        registry.validate()
        assert "deploy" in registry
        assert registry.resolve("deploy:info").hidden

    def test_cachetool_descriptions(self):
        registry = build_registry()
        assert registry.resolve("cache:flush:opcache").description == \
            "Flushes the OPcache on the remote server, if installed"
