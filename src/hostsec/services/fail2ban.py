"""fail2ban jail configuration, service start and diagnostics.

The sshd jail fragment is owned entirely by hostsec and is rewritten on
every run. ``jail.local`` may belong to other tooling, so a fallback
backend is only ever appended to it. After a restart the control socket
is polled for a bounded time instead of sleeping blindly.
"""

import configparser
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from hostsec.core.config import Fail2banConfig
from hostsec.core.context import ExecutionContext
from hostsec.core.executor import CommandExecutor
from hostsec.core.exceptions import ExecutionError, Fail2banError, ServiceError
from hostsec.core.files import tail_lines
from hostsec.core.reconcile import StageReport
from hostsec.core.templates import render_template
from hostsec.services.systemd import ServiceStatus, SystemdService


CLIENT = "fail2ban-client"

TROUBLESHOOTING_HINTS = [
    "Check: journalctl -u fail2ban -n 60",
    "Look for 'No log file', 'Bad substitution' or 'asynchat' errors",
    "Try: sudo fail2ban-client -x start  (force start with verbose output)",
]


@dataclass
class JailDefinition:
    """Fields of the managed jail section."""
    name: str = "sshd"
    enabled: bool = True
    port: str = "ssh"
    filter: str = "sshd"
    backend: str = "systemd"
    mode: str = "aggressive"
    maxretry: int = 3
    findtime: str = "10m"
    bantime: str = "24h"

    @classmethod
    def from_config(cls, config: Fail2banConfig) -> "JailDefinition":
        return cls(
            name=config.jail_name,
            port=config.port,
            filter=config.filter,
            backend=config.backend,
            mode=config.mode,
            maxretry=config.maxretry,
            findtime=config.findtime,
            bantime=config.bantime,
        )

    def render(self) -> str:
        """Render the jail as an INI fragment."""
        return render_template("fail2ban/jail.conf.j2", jail=self)


@dataclass
class JailStatus:
    """Parsed ``fail2ban-client status <jail>`` output."""
    name: str
    currently_failed: int = 0
    total_failed: int = 0
    currently_banned: int = 0
    total_banned: int = 0
    banned_ips: list[str] = field(default_factory=list)
    file_list: list[str] = field(default_factory=list)
    journal_matches: Optional[str] = None


def parse_jail_status(name: str, output: str) -> JailStatus:
    """Parse the tree-formatted jail status output."""
    status = JailStatus(name=name)
    counters = {
        "currently failed": "currently_failed",
        "total failed": "total_failed",
        "currently banned": "currently_banned",
        "total banned": "total_banned",
    }

    for raw_line in output.splitlines():
        line = raw_line.lstrip(" |`-\t")
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = key.strip().lower()
        value = value.strip()

        if key in counters:
            try:
                setattr(status, counters[key], int(value))
            except ValueError:
                continue
        elif key == "banned ip list":
            status.banned_ips = value.split()
        elif key == "file list":
            status.file_list = value.split()
        elif key == "journal matches":
            status.journal_matches = value or None

    return status


def has_backend_directive(text: str) -> bool:
    """Check if jail.local text defines ``backend`` in any section."""
    parser = configparser.ConfigParser(strict=False, interpolation=None)
    try:
        parser.read_string(text)
    except configparser.Error:
        # Not valid INI; fall back to a line scan
        return any(
            line.strip().lower().startswith("backend")
            for line in text.splitlines()
            if not line.strip().startswith(("#", ";"))
        )

    if "backend" in parser.defaults():
        return True
    return any(parser.has_option(section, "backend") for section in parser.sections())


@dataclass
class Diagnostics:
    """Result of one diagnostics pass."""
    socket_present: bool
    jail: str
    jail_status: Optional[JailStatus] = None
    jail_error: Optional[str] = None
    service_status: Optional[ServiceStatus] = None
    status_text: str = ""
    log_path: Optional[Path] = None
    log_lines: Optional[list[str]] = None
    self_test_ok: bool = False
    self_test_output: str = ""

    @property
    def healthy(self) -> bool:
        return self.socket_present and self.jail_status is not None and self.self_test_ok


class Fail2banService:
    """Configures fail2ban for sshd and inspects its health."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        systemd: Optional[SystemdService] = None,
        config: Optional[Fail2banConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.systemd = systemd or SystemdService(ctx, executor)
        self.config = config or ctx.config.fail2ban
        self._sleep = sleep
        self._clock = clock

    @property
    def jail(self) -> JailDefinition:
        return JailDefinition.from_config(self.config)

    # Configuration
    def write_jail(self) -> bool:
        """Overwrite the jail fragment.

        Returns:
            True if the content on disk changed

        Raises:
            Fail2banError: If the fragment cannot be written
        """
        path = self.config.jail_path
        content = self.jail.render()
        try:
            before = path.read_bytes() if path.is_file() else None
            self.executor.write_file(path, content, description=f"Writing {path}")
        except OSError as e:
            raise Fail2banError(
                f"Cannot write jail fragment {path}",
                details=[str(e)],
            ) from e
        return before != content.encode()

    def jail_local_has_backend(self) -> bool:
        path = self.config.jail_local
        if not path.is_file():
            return False
        return has_backend_directive(path.read_text(errors="replace"))

    def ensure_default_backend(self) -> bool:
        """Append a [DEFAULT] backend to jail.local if none is defined.

        Returns:
            True if a directive was appended

        Raises:
            Fail2banError: If jail.local cannot be read or appended to
        """
        path = self.config.jail_local
        try:
            if self.jail_local_has_backend():
                self.ctx.console.verbose(f"{path} already defines a backend")
                return False

            self.executor.append_file(
                path,
                render_template(
                    "fail2ban/jail.local-default.j2",
                    backend=self.config.fallback_backend,
                ),
                description=f"Adding fallback backend to {path}",
            )
        except OSError as e:
            raise Fail2banError(
                f"Cannot update {path}",
                details=[str(e)],
            ) from e
        return True

    # Readiness
    def socket_exists(self) -> bool:
        """Check if the control socket exists."""
        return self.config.socket_path.is_socket()

    def wait_for_socket(
        self,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> bool:
        """Poll for the control socket until it appears or time runs out.

        Returns:
            True if the socket exists before the deadline
        """
        if self.ctx.dry_run:
            return self.socket_exists()

        timeout = self.config.settle_timeout if timeout is None else timeout
        interval = self.config.poll_interval if interval is None else interval
        deadline = self._clock() + timeout

        while True:
            if self.socket_exists():
                return True
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            self._sleep(min(interval, remaining))

    # Queries
    def jail_status(self, jail: Optional[str] = None) -> JailStatus:
        """Query a jail through the control socket.

        Raises:
            Fail2banError: If the client query fails
        """
        name = jail or self.config.jail_name
        try:
            result = self.executor.run([CLIENT, "status", name], mutating=False)
        except ExecutionError as e:
            raise Fail2banError(
                f"Jail query failed for {name}",
                details=e.details,
                hint="Check the fail2ban log for jail errors",
            ) from e
        return parse_jail_status(name, result.stdout)

    def self_test(self) -> tuple[bool, str]:
        """Run the configuration self-test (``fail2ban-client -t``)."""
        result = self.executor.run([CLIENT, "-t"], check=False, mutating=False)
        output = (result.stdout + result.stderr).strip()
        return result.success, output

    def tail_log(self, lines: Optional[int] = None) -> Optional[list[str]]:
        """Last lines of the fail2ban log, or None if there is no log yet."""
        try:
            return tail_lines(self.config.log_path, lines or self.config.log_lines)
        except FileNotFoundError:
            return None

    # Stages
    def converge(self, settle_timeout: Optional[float] = None) -> StageReport:
        """Write configuration, then enable and restart fail2ban.

        Nothing in this stage is fatal; failures become warnings so the
        diagnostics that follow always run.

        Args:
            settle_timeout: Seconds to wait for the control socket,
                overriding the configured value
        """
        report = StageReport(name="fail2ban")
        service = self.config.service
        timeout = self.config.settle_timeout if settle_timeout is None else settle_timeout

        try:
            if self.write_jail():
                report.record(str(self.config.jail_path), "written")
            else:
                self.ctx.console.verbose(f"{self.config.jail_path} unchanged")
        except Fail2banError as e:
            report.warn(e.message)
            self.ctx.console.warn(e.message)

        try:
            if self.ensure_default_backend():
                report.record(
                    str(self.config.jail_local),
                    "appended",
                    f"backend = {self.config.fallback_backend}",
                )
        except Fail2banError as e:
            report.warn(e.message)
            self.ctx.console.warn(e.message)

        try:
            self.systemd.daemon_reload()
        except ServiceError as e:
            report.warn(e.message)
            self.ctx.console.warn(e.message)

        try:
            was_enabled = self.systemd.is_enabled(service)
            self.systemd.enable(service)
            if not was_enabled:
                report.record(f"service {service}", "enabled")
        except ServiceError as e:
            report.warn(e.message)
            self.ctx.console.warn(e.message)

        try:
            self.systemd.restart(service)
            report.record(f"service {service}", "restarted")
        except ServiceError as e:
            report.warn(e.message)
            self.ctx.console.warn(e.message)
            if e.hint:
                self.ctx.console.hint(e.hint)

        with self.ctx.console.status("Waiting for fail2ban control socket..."):
            ready = self.wait_for_socket(timeout)
        if ready:
            self.ctx.console.success("fail2ban control socket is up")
        elif not self.ctx.dry_run:
            report.warn(
                f"control socket {self.config.socket_path} missing after "
                f"{timeout:g}s"
            )

        return report

    def diagnose(self) -> Diagnostics:
        """Run one diagnostics pass; every check failure is reported, not raised."""
        diag = Diagnostics(
            socket_present=self.socket_exists(),
            jail=self.config.jail_name,
            log_path=self.config.log_path,
        )

        if diag.socket_present:
            try:
                diag.jail_status = self.jail_status()
            except Fail2banError as e:
                diag.jail_error = e.message

        diag.service_status = self.systemd.status(self.config.service)
        diag.status_text = self.systemd.status_text(self.config.service)
        diag.log_lines = self.tail_log()
        diag.self_test_ok, diag.self_test_output = self.self_test()
        return diag
