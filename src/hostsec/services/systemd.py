"""systemctl wrapper used by the SSH and fail2ban stages.

Queries always run (they are read-only). Mutations print what they would
do in dry-run mode and otherwise raise ServiceError on failure.
"""

from dataclasses import dataclass
from typing import Optional

from hostsec.core.context import ExecutionContext
from hostsec.core.executor import CommandExecutor, CommandResult
from hostsec.core.exceptions import ExecutionError, ServiceError


SHOW_PROPERTIES = ("ActiveState", "SubState", "UnitFileState", "MainPID", "Description")

# is-enabled exits 0 for these states
ENABLED_STATES = frozenset({"enabled", "enabled-runtime", "alias"})


def parse_properties(text: str) -> dict[str, str]:
    """Parse ``systemctl show`` Key=Value lines."""
    props = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            props[key.strip()] = value.strip()
    return props


@dataclass
class ServiceStatus:
    """Unit state as reported by ``systemctl show``."""
    name: str
    active_state: str = "unknown"
    sub_state: str = "unknown"
    unit_file_state: str = "unknown"
    description: Optional[str] = None
    pid: Optional[int] = None

    @property
    def active(self) -> bool:
        return self.active_state == "active"

    @property
    def enabled(self) -> bool:
        return self.unit_file_state in ENABLED_STATES

    @property
    def running(self) -> bool:
        return self.sub_state == "running"

    @classmethod
    def from_properties(cls, name: str, props: dict[str, str]) -> "ServiceStatus":
        try:
            pid = int(props.get("MainPID", "0")) or None
        except ValueError:
            pid = None
        return cls(
            name=name,
            active_state=props.get("ActiveState") or "unknown",
            sub_state=props.get("SubState") or "unknown",
            unit_file_state=props.get("UnitFileState") or "unknown",
            description=props.get("Description") or None,
            pid=pid,
        )


class SystemdService:
    """Enable, restart and inspect systemd units."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def _query(self, *args: str) -> CommandResult:
        return self.executor.run(["systemctl", *args], check=False, mutating=False)

    def _apply(
        self,
        args: list[str],
        step: str,
        failure: str,
        *,
        service: Optional[str] = None,
        hint: Optional[str] = None,
    ) -> None:
        """Run a mutating systemctl call, mapping failures to ServiceError."""
        self.ctx.console.step(step)
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(" ".join(["systemctl", *args]))
            return

        try:
            self.executor.run(["systemctl", *args])
        except ExecutionError as e:
            raise ServiceError(failure, service=service, hint=hint, details=e.details) from e

    def is_enabled(self, service: str) -> bool:
        return self._query("is-enabled", "--quiet", service).success

    def status(self, service: str) -> ServiceStatus:
        """Read unit state in a single ``systemctl show`` call.

        An unknown unit comes back with every state set to "unknown" or
        "inactive" rather than raising.
        """
        result = self._query("show", service, f"--property={','.join(SHOW_PROPERTIES)}")
        return ServiceStatus.from_properties(service, parse_properties(result.stdout))

    def status_text(self, service: str, lines: int = 12) -> str:
        """Head of ``systemctl status`` for display."""
        result = self._query("status", service, "--no-pager")
        return "\n".join((result.stdout or result.stderr).splitlines()[:lines])

    def restart(self, service: str) -> None:
        """Restart a unit.

        Raises:
            ServiceError: If the restart fails
        """
        self._apply(
            ["restart", service],
            f"Restarting {service}",
            f"Failed to restart {service}",
            service=service,
            hint=f"Check logs: journalctl -xeu {service}",
        )

    def restart_first(self, services: list[str]) -> str:
        """Restart the first candidate unit name that works (ssh vs sshd).

        Returns:
            The unit name that was restarted

        Raises:
            ServiceError: If every candidate fails, with one detail each
        """
        failures: list[str] = []
        for service in services:
            try:
                self.restart(service)
            except ServiceError as e:
                self.ctx.console.verbose(f"{e.message}, trying next unit name")
                failures.append(e.message)
            else:
                return service

        first = services[0] if services else None
        raise ServiceError(
            f"Failed to restart any of: {', '.join(services)}",
            service=first,
            hint=f"Check logs: journalctl -xeu {first}" if first else None,
            details=failures,
        )

    def enable(self, service: str, *, start: bool = False) -> None:
        """Enable a unit at boot, optionally starting it now.

        Raises:
            ServiceError: If systemctl enable fails
        """
        args = ["enable", "--quiet", *(["--now"] if start else []), service]
        self._apply(args, f"Enabling {service}", f"Failed to enable {service}", service=service)

    def daemon_reload(self) -> None:
        self._apply(["daemon-reload"], "Reloading systemd units", "Failed to reload systemd daemon")
