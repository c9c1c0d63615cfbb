"""Unit tests for the systemd service wrapper."""

import pytest

from hostsec.core.context import ExecutionContext
from hostsec.core.exceptions import ServiceError
from hostsec.core.executor import CommandExecutor
from hostsec.services.systemd import SystemdService, parse_properties


class TestQueries:
    """Tests for is_enabled and status."""

    def test_is_enabled(self, ctx, executor, stub):
        systemd = SystemdService(ctx, executor)
        assert systemd.is_enabled("fail2ban")
        stub.on("systemctl", "is-enabled", rc=1)
        assert not systemd.is_enabled("fail2ban")
        assert ["systemctl", "is-enabled", "--quiet", "fail2ban"] in stub.calls

    def test_status(self, ctx, executor, stub):
        stub.on("systemctl", "show", stdout=(
            "ActiveState=active\nSubState=running\nUnitFileState=enabled\n"
            "MainPID=1234\nDescription=Fail2Ban Service\n"
        ))
        status = SystemdService(ctx, executor).status("fail2ban")
        assert status.active
        assert status.enabled
        assert status.running
        assert status.pid == 1234
        assert status.description == "Fail2Ban Service"
        assert stub.count("systemctl") == 1

    def test_status_stopped(self, ctx, executor, stub):
        stub.on("systemctl", "show", stdout=(
            "ActiveState=failed\nSubState=failed\nUnitFileState=disabled\n"
            "MainPID=0\nDescription=\n"
        ))
        status = SystemdService(ctx, executor).status("fail2ban")
        assert not status.active
        assert not status.enabled
        assert not status.running
        assert status.pid is None
        assert status.description is None

    def test_status_unreadable(self, ctx, executor):
        status = SystemdService(ctx, executor).status("fail2ban")
        assert status.active_state == "unknown"
        assert not status.active


class TestParseProperties:
    def test_values_may_contain_equals(self):
        props = parse_properties("ExecStart=/usr/bin/fail2ban-server -xf start\nEnvironment=A=1\n")
        assert props["Environment"] == "A=1"

    def test_blank_and_malformed_lines_ignored(self):
        assert parse_properties("\nnot a property\nMainPID=7\n") == {"MainPID": "7"}


class TestRestartFirst:
    """ssh vs sshd unit name fallback."""

    def test_first_name_wins(self, ctx, executor, stub):
        systemd = SystemdService(ctx, executor)
        assert systemd.restart_first(["ssh", "sshd"]) == "ssh"
        assert not stub.ran("systemctl", "restart", "sshd")

    def test_falls_back(self, ctx, executor, stub):
        stub.on("systemctl", "restart", "ssh", rc=5)
        systemd = SystemdService(ctx, executor)
        assert systemd.restart_first(["ssh", "sshd"]) == "sshd"

    def test_all_fail(self, ctx, executor, stub):
        stub.on("systemctl", "restart", rc=5)
        systemd = SystemdService(ctx, executor)
        with pytest.raises(ServiceError) as exc:
            systemd.restart_first(["ssh", "sshd"])
        assert len(exc.value.details) == 2
        assert stub.count("systemctl", "restart") == 2


class TestMutations:
    """Tests for enable and daemon_reload."""

    def test_enable(self, ctx, executor, stub):
        SystemdService(ctx, executor).enable("fail2ban")
        assert ["systemctl", "enable", "--quiet", "fail2ban"] in stub.calls

    def test_enable_failure(self, ctx, executor, stub):
        stub.on("systemctl", "enable", rc=1)
        with pytest.raises(ServiceError):
            SystemdService(ctx, executor).enable("fail2ban")

    def test_daemon_reload_failure(self, ctx, executor, stub):
        stub.on("systemctl", "daemon-reload", rc=1)
        with pytest.raises(ServiceError):
            SystemdService(ctx, executor).daemon_reload()

    def test_dry_run_skips_mutations(self, host_config, stub):
        ctx = ExecutionContext(dry_run=True, _config=host_config)
        executor = CommandExecutor(ctx)
        executor.run = stub
        systemd = SystemdService(ctx, executor)

        systemd.daemon_reload()
        systemd.enable("fail2ban", start=True)
        systemd.restart("fail2ban")

        assert stub.calls == []
