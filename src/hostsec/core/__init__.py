"""Core framework components for hostsec."""

from hostsec.core.exceptions import (
    HostSecError,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    PrerequisiteError,
    ServiceError,
    PackageError,
    FirewallError,
    Fail2banError,
)

from hostsec.core.context import ExecutionContext, create_context
from hostsec.core.output import console, Console, Verbosity
from hostsec.core.config import HostConfig
from hostsec.core.safety import (
    PreflightRunner,
    require_root,
    run_preflight_checks,
)
from hostsec.core.audit import AuditLogger, AuditEvent, AuditEventType, AuditResult, get_audit_logger
from hostsec.core.executor import CommandExecutor, CommandResult
from hostsec.core.reconcile import Change, StageReport, HardenReport

__all__ = [
    # Exceptions
    "HostSecError",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "PrerequisiteError",
    "ServiceError",
    "PackageError",
    "FirewallError",
    "Fail2banError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "HostConfig",
    # Safety
    "PreflightRunner",
    "require_root",
    "run_preflight_checks",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "get_audit_logger",
    # Executor
    "CommandExecutor",
    "CommandResult",
    # Convergence
    "Change",
    "StageReport",
    "HardenReport",
]
