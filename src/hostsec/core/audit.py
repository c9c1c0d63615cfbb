"""Append-only JSON audit trail of hardening runs.

One JSON object per line. Every event written by one process shares a
session id, and the events of one ``hostsec harden`` run also share a
correlation id. Appends hold an exclusive lock; the file is rotated by
size into ``audit.log.1`` .. ``audit.log.N``.

Audit problems never abort a run. They are reported in debug output.
"""

import fcntl
import json
import os
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Generator, Optional, TextIO

from hostsec.core.output import console
from hostsec.core.reconcile import Change


DEFAULT_LOG_PATH = Path("/var/log/hostsec/audit.log")
DEFAULT_MAX_BYTES = 20 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5
LOG_PERMS = 0o640

REDACTED = "***REDACTED***"
SECRET_MARKERS = ("password", "passwd", "secret", "token", "credential")


class AuditEventType(Enum):
    """What an audit event describes."""
    HARDEN_RUN = "harden.run"
    DIAGNOSTICS = "harden.diagnostics"

    PACKAGE_INSTALL = "package.install"

    FIREWALL_RULE_ADD = "firewall.rule_add"
    FIREWALL_POLICY = "firewall.policy"
    FIREWALL_ENABLE = "firewall.enable"

    CONFIG_MODIFY = "config.modify"
    CONFIG_BACKUP = "config.backup"

    SERVICE_ENABLE = "service.enable"
    SERVICE_RESTART = "service.restart"

    @classmethod
    def for_change(cls, change: Change) -> "AuditEventType":
        """Classify a change recorded by one of the hardening stages."""
        if change.resource.startswith("package "):
            return cls.PACKAGE_INSTALL
        if change.resource.startswith("ufw"):
            if change.action == "allow":
                return cls.FIREWALL_RULE_ADD
            if change.action == "enabled":
                return cls.FIREWALL_ENABLE
            return cls.FIREWALL_POLICY
        if change.resource.startswith("service "):
            return cls.SERVICE_ENABLE if change.action == "enabled" else cls.SERVICE_RESTART
        if change.action == "backed up":
            return cls.CONFIG_BACKUP
        return cls.CONFIG_MODIFY


class AuditResult(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DRY_RUN = "dry_run"
    PARTIAL = "partial"  # completed with tolerated warnings


def redact(parameters: dict[str, Any]) -> dict[str, Any]:
    """Mask values whose key names a secret, including nested dicts."""
    clean: dict[str, Any] = {}
    for key, value in parameters.items():
        if any(marker in key.lower() for marker in SECRET_MARKERS):
            clean[key] = REDACTED
        elif isinstance(value, dict):
            clean[key] = redact(value)
        else:
            clean[key] = value
    return clean


@dataclass
class AuditEvent:
    """A single line of the audit log."""
    event_type: AuditEventType
    result: AuditResult
    host: Optional[str] = None
    stage: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    detail: Optional[str] = None
    error: Optional[str] = None
    parameters: dict[str, Any] = field(default_factory=dict)

    uid: int = field(default_factory=os.getuid)
    sudo_user: Optional[str] = field(default_factory=lambda: os.environ.get("SUDO_USER"))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    session_id: Optional[str] = None
    correlation_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "result": self.result.value,
            "host": self.host,
            "stage": self.stage,
            "resource": self.resource,
            "action": self.action,
            "detail": self.detail,
            "error": self.error,
            "parameters": redact(self.parameters),
            "actor": {"uid": self.uid, "sudo_user": self.sudo_user},
            "session_id": self.session_id,
            "correlation_id": self.correlation_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class AuditLogger:
    """Writes audit events for one process."""

    def __init__(
        self,
        log_path: Optional[Path] = None,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        enabled: bool = True,
    ) -> None:
        self.log_path = log_path or DEFAULT_LOG_PATH
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.enabled = enabled

        self.session_id = uuid.uuid4().hex
        self._correlation: list[str] = []

    def log(self, event: AuditEvent) -> None:
        if not self.enabled:
            return

        event.session_id = self.session_id
        if self._correlation:
            event.correlation_id = self._correlation[-1]

        try:
            self.log_path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
            with self._locked_append() as f:
                f.write(event.to_json() + "\n")
            if self.log_path.stat().st_size > self.max_bytes:
                self._rotate()
        except OSError as e:
            console.debug(f"Audit log unavailable ({self.log_path}): {e}")

    @contextmanager
    def _locked_append(self) -> Generator[TextIO, None, None]:
        fd = os.open(self.log_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, LOG_PERMS)
        with os.fdopen(fd, "a") as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            yield f
            f.flush()
            os.fsync(f.fileno())

    def backup_path(self, index: int) -> Path:
        return self.log_path.with_name(f"{self.log_path.name}.{index}")

    def _rotate(self) -> None:
        self.backup_path(self.backup_count).unlink(missing_ok=True)
        for index in range(self.backup_count - 1, 0, -1):
            if self.backup_path(index).exists():
                self.backup_path(index).rename(self.backup_path(index + 1))
        self.log_path.rename(self.backup_path(1))

    @contextmanager
    def correlation(self, operation: str) -> Generator[str, None, None]:
        """Tag every event logged inside the block with one correlation id."""
        correlation_id = f"{operation}_{uuid.uuid4().hex[:8]}"
        self._correlation.append(correlation_id)
        try:
            yield correlation_id
        finally:
            self._correlation.pop()

    def log_change(self, stage: str, change: Change, dry_run: bool = False) -> None:
        """Record a mutation applied (or, in dry-run, planned) by a stage."""
        self.log(AuditEvent(
            event_type=AuditEventType.for_change(change),
            result=AuditResult.DRY_RUN if dry_run else AuditResult.SUCCESS,
            stage=stage,
            resource=change.resource,
            action=change.action,
            detail=change.detail,
        ))

    def log_run(
        self,
        event_type: AuditEventType,
        result: AuditResult,
        host: str,
        parameters: Optional[dict[str, Any]] = None,
        detail: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Record the outcome of a whole command."""
        self.log(AuditEvent(
            event_type=event_type,
            result=result,
            host=host,
            parameters=parameters or {},
            detail=detail,
            error=error,
        ))


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(
    log_path: Optional[Path] = None,
    enabled: bool = True,
) -> AuditLogger:
    """Replace the process-wide audit logger."""
    global _audit_logger
    _audit_logger = AuditLogger(log_path=log_path, enabled=enabled)
    return _audit_logger
