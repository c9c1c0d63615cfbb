"""Pre-flight checks run before a hardening pass.

Critical failures stop the run before anything is changed. Warnings are
printed and the run continues.
"""

import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from pathlib import Path
from typing import Callable, Optional, Any

import typer

from hostsec.core.exceptions import PrerequisiteError
from hostsec.core.output import console


class CheckResult(Enum):
    """Result of a pre-flight check."""
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    SKIP = "skip"


RESULT_MARKS = {
    CheckResult.PASS: "[green]PASS[/green]",
    CheckResult.WARN: "[yellow]WARN[/yellow]",
    CheckResult.FAIL: "[red]FAIL[/red]",
    CheckResult.SKIP: "[dim]SKIP[/dim]",
}


@dataclass(frozen=True)
class PreflightResult:
    check_name: str
    result: CheckResult
    message: str
    remediation: Optional[str] = None


class PreflightCheck(ABC):
    """One host property that must hold before hardening."""

    name: str = ""
    critical: bool = True

    @abstractmethod
    def run(self) -> PreflightResult:
        ...

    def _result(
        self,
        result: CheckResult,
        message: str,
        remediation: Optional[str] = None,
    ) -> PreflightResult:
        return PreflightResult(self.name, result, message, remediation)


class RootCheck(PreflightCheck):
    name = "Root privileges"

    def run(self) -> PreflightResult:
        if os.geteuid() != 0:
            return self._result(
                CheckResult.FAIL,
                "Must be run as root",
                "Run with: sudo hostsec harden",
            )
        return self._result(CheckResult.PASS, "Running as root")


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``/etc/os-release`` KEY=value lines, unquoting values."""
    fields = {}
    for line in text.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep and key and not key.startswith("#"):
            fields[key] = value.strip('"').strip("'")
    return fields


class OSCompatibilityCheck(PreflightCheck):
    """apt, ufw and the sshd_config.d layout assume a Debian family host."""

    name = "OS compatibility"

    SUPPORTED = frozenset({"debian", "ubuntu"})

    def __init__(self, os_release: Path = Path("/etc/os-release")) -> None:
        self.os_release = os_release

    def run(self) -> PreflightResult:
        try:
            fields = parse_os_release(self.os_release.read_text(errors="replace"))
        except FileNotFoundError:
            return self._result(
                CheckResult.FAIL,
                f"{self.os_release} not found",
                "hostsec requires Debian or Ubuntu",
            )

        family = {fields.get("ID", "").lower(), *fields.get("ID_LIKE", "").lower().split()}
        pretty = fields.get("PRETTY_NAME") or fields.get("ID") or "unknown"
        if not self.SUPPORTED & family:
            return self._result(
                CheckResult.FAIL,
                f"Unsupported OS: {pretty}",
                "hostsec supports Debian, Ubuntu and their derivatives",
            )
        return self._result(CheckResult.PASS, pretty)


class ToolingCheck(PreflightCheck):
    """Package and service management commands every stage relies on."""

    name = "System tooling"

    REQUIRED_COMMANDS = ("apt-get", "dpkg-query", "systemctl")

    def run(self) -> PreflightResult:
        missing = [cmd for cmd in self.REQUIRED_COMMANDS if shutil.which(cmd) is None]
        if missing:
            return self._result(
                CheckResult.FAIL,
                f"Missing commands: {', '.join(missing)}",
                "hostsec needs apt and systemd",
            )
        return self._result(CheckResult.PASS, "apt and systemctl available")


class SystemdRunningCheck(PreflightCheck):
    """systemctl only works when systemd is PID 1 (not in most containers)."""

    name = "systemd running"
    critical = False

    def __init__(self, marker: Path = Path("/run/systemd/system")) -> None:
        self.marker = marker

    def run(self) -> PreflightResult:
        if not self.marker.is_dir():
            return self._result(
                CheckResult.WARN,
                "systemd is not the init system; service restarts will fail",
                "Run hostsec on the host, not inside a container",
            )
        return self._result(CheckResult.PASS, "systemd is PID 1")


class SshdIncludeCheck(PreflightCheck):
    """A drop-in only takes effect when sshd_config includes its directory."""

    name = "sshd drop-in support"
    critical = False

    def __init__(
        self,
        sshd_config: Path = Path("/etc/ssh/sshd_config"),
        dropin_dir: Path = Path("/etc/ssh/sshd_config.d"),
    ) -> None:
        self.sshd_config = sshd_config
        self.dropin_dir = dropin_dir

    def run(self) -> PreflightResult:
        if not self.sshd_config.exists():
            return self._result(CheckResult.SKIP, "openssh-server not installed yet")

        for line in self.sshd_config.read_text(errors="replace").splitlines():
            parts = line.split(None, 1)
            if len(parts) == 2 and parts[0].lower() == "include" and str(self.dropin_dir) in parts[1]:
                return self._result(CheckResult.PASS, f"{self.sshd_config} includes {self.dropin_dir}")

        return self._result(
            CheckResult.WARN,
            f"{self.sshd_config} does not include {self.dropin_dir}",
            f"Add 'Include {self.dropin_dir}/*.conf' at the top of {self.sshd_config}",
        )


def default_checks(dropin_dir: Path = Path("/etc/ssh/sshd_config.d")) -> list[PreflightCheck]:
    return [
        RootCheck(),
        OSCompatibilityCheck(),
        ToolingCheck(),
        SystemdRunningCheck(),
        SshdIncludeCheck(dropin_dir=dropin_dir),
    ]


class PreflightRunner:
    """Runs checks in order, stopping at the first critical failure."""

    def __init__(
        self,
        checks: Optional[list[PreflightCheck]] = None,
        skip_root_check: bool = False,
    ) -> None:
        if checks is None:
            checks = default_checks()
        if skip_root_check:
            checks = [c for c in checks if not isinstance(c, RootCheck)]
        self.checks = checks

    def run_all(self, fail_fast: bool = True) -> list[PreflightResult]:
        results = []
        for check in self.checks:
            result = check.run()
            results.append(result)
            if fail_fast and check.critical and result.result == CheckResult.FAIL:
                break
        return results

    @staticmethod
    def failures(results: list[PreflightResult]) -> list[PreflightResult]:
        return [r for r in results if r.result == CheckResult.FAIL]

    def display_results(self, results: list[PreflightResult]) -> None:
        console.print()
        console.rule("Pre-flight Checks")
        for result in results:
            console.print(f"  {RESULT_MARKS[result.result]} {result.check_name}: {result.message}")
            if result.remediation and result.result in (CheckResult.FAIL, CheckResult.WARN):
                console.print(f"        [dim]Fix: {result.remediation}[/dim]")
        console.print()


def require_root(func: Callable[..., Any]) -> Callable[..., Any]:
    """Exit with the prerequisite exit code unless running as root."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        if os.geteuid() != 0:
            console.error("This operation requires root privileges")
            console.hint(f"Run with: sudo hostsec {func.__name__.removeprefix('run_')}")
            raise typer.Exit(PrerequisiteError.exit_code)
        return func(*args, **kwargs)
    return wrapper


def run_preflight_checks(
    dry_run: bool = False,
    verbose: bool = False,
    dropin_dir: Optional[Path] = None,
) -> bool:
    """Run the pre-flight checks for a hardening pass.

    The root check is skipped in dry-run mode, which never mutates.
    Non-critical warnings are always printed.

    Args:
        dry_run: Whether dry-run mode is enabled
        verbose: Show every check result
        dropin_dir: Configured SSH drop-in directory

    Returns:
        True if no critical check failed

    Raises:
        PrerequisiteError: If a critical check fails
    """
    checks = default_checks(dropin_dir) if dropin_dir is not None else None
    runner = PreflightRunner(checks, skip_root_check=dry_run)
    results = runner.run_all()

    if verbose:
        runner.display_results(results)
    else:
        for result in results:
            if result.result == CheckResult.WARN:
                console.warn(f"{result.check_name}: {result.message}")

    failures = runner.failures(results)
    if failures:
        raise PrerequisiteError(
            "Pre-flight checks failed",
            details=[f"{r.check_name}: {r.message}" for r in failures],
            hint=failures[0].remediation or "Fix the issues above and try again",
        )
    return True
