"""Unit tests for the JSON audit log."""

import json
from pathlib import Path

import pytest

from hostsec.core.audit import (
    REDACTED,
    AuditEvent,
    AuditEventType,
    AuditLogger,
    AuditResult,
    redact,
)
from hostsec.core.reconcile import Change


def read_events(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestEventTypes:
    """Changes map to event types by resource and action."""

    @pytest.mark.parametrize("change,expected", [
        (Change("package ufw", "installed"), AuditEventType.PACKAGE_INSTALL),
        (Change("ufw rule", "allow", "OpenSSH"), AuditEventType.FIREWALL_RULE_ADD),
        (Change("ufw", "enabled"), AuditEventType.FIREWALL_ENABLE),
        (Change("ufw default incoming", "set", "deny"), AuditEventType.FIREWALL_POLICY),
        (Change("service fail2ban", "enabled"), AuditEventType.SERVICE_ENABLE),
        (Change("service ssh", "restarted"), AuditEventType.SERVICE_RESTART),
        (Change("/etc/ssh/sshd_config.d/99-security.conf", "backed up"), AuditEventType.CONFIG_BACKUP),
        (Change("/etc/fail2ban/jail.local", "appended"), AuditEventType.CONFIG_MODIFY),
    ])
    def test_for_change(self, change, expected):
        assert AuditEventType.for_change(change) == expected


class TestRedact:
    def test_secret_keys_masked(self):
        clean = redact({"api_token": "abc", "Password": "x", "port": 22})
        assert clean == {"api_token": REDACTED, "Password": REDACTED, "port": 22}

    def test_nested(self):
        assert redact({"smtp": {"secret": "s", "host": "mx"}}) == {
            "smtp": {"secret": REDACTED, "host": "mx"},
        }

    def test_event_parameters_redacted(self):
        event = AuditEvent(AuditEventType.HARDEN_RUN, AuditResult.SUCCESS, parameters={"token": "t"})
        assert event.to_dict()["parameters"]["token"] == REDACTED


class TestAuditLogger:
    """Tests for writing, correlation and rotation."""

    def test_writes_json_lines(self, tmp_path: Path):
        path = tmp_path / "audit" / "audit.log"
        logger = AuditLogger(log_path=path)

        logger.log_change("firewall", Change("ufw", "enabled"))
        logger.log_run(AuditEventType.HARDEN_RUN, AuditResult.SUCCESS, "web-1", parameters={"changed": True})

        first, second = read_events(path)
        assert first["event_type"] == "firewall.enable"
        assert first["stage"] == "firewall"
        assert second["host"] == "web-1"
        assert second["parameters"] == {"changed": True}
        assert first["session_id"] == second["session_id"] == logger.session_id

    def test_dry_run_result(self, tmp_path: Path):
        path = tmp_path / "audit.log"
        AuditLogger(log_path=path).log_change("packages", Change("package ufw", "installed"), dry_run=True)
        assert read_events(path)[0]["result"] == "dry_run"

    def test_disabled(self, tmp_path: Path):
        path = tmp_path / "audit.log"
        AuditLogger(log_path=path, enabled=False).log_change("ssh", Change("x", "written"))
        assert not path.exists()

    def test_correlation(self, tmp_path: Path):
        path = tmp_path / "audit.log"
        logger = AuditLogger(log_path=path)

        with logger.correlation("harden") as corr_id:
            logger.log_change("ssh", Change("a", "written"))
            logger.log_change("ssh", Change("b", "written"))
        logger.log_change("ssh", Change("c", "written"))

        events = read_events(path)
        assert corr_id.startswith("harden_")
        assert [e["correlation_id"] for e in events] == [corr_id, corr_id, None]

    def test_rotation(self, tmp_path: Path):
        path = tmp_path / "audit.log"
        logger = AuditLogger(log_path=path, max_bytes=1, backup_count=2)

        for name in ("one", "two", "three"):
            logger.log_change("ssh", Change(name, "written"))

        assert not path.exists()
        assert read_events(logger.backup_path(1))[0]["resource"] == "three"
        assert read_events(logger.backup_path(2))[0]["resource"] == "two"
        assert not logger.backup_path(3).exists()

    def test_unwritable_path_does_not_raise(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        AuditLogger(log_path=blocker / "audit.log").log_change("ssh", Change("x", "written"))
