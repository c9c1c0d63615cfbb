"""SSH daemon hardening through an sshd_config.d drop-in.

The drop-in is written, and the SSH unit restarted, only when the
drop-in directory exists and the file is missing or does not disable
password authentication. A re-run on a hardened host touches nothing
and never drops the operator's connection.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from hostsec.core.config import SshConfig
from hostsec.core.context import ExecutionContext
from hostsec.core.executor import CommandExecutor
from hostsec.core.exceptions import ServiceError
from hostsec.core.reconcile import StageReport
from hostsec.core.templates import render_template
from hostsec.services.systemd import SystemdService


# Directive that marks the drop-in as applied
MARKER_KEY = "passwordauthentication"
MARKER_VALUE = "no"

# "Keyword value" or "Keyword=value"
KEYWORD_SEPARATOR = re.compile(r"\s*=\s*|\s+")


def parse_sshd_config(config_text: str) -> dict[str, str]:
    """Parse sshd_config text into lowercase keys and values.

    sshd uses the first value it sees for a keyword, and everything after
    a ``Match`` line is conditional, so parsing stops there.
    """
    config: dict[str, str] = {}
    for line in config_text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = KEYWORD_SEPARATOR.split(line, maxsplit=1)
        if len(parts) != 2:
            continue
        key = parts[0].lower()
        if key == "match":
            break
        config.setdefault(key, parts[1].strip().strip('"'))
    return config


@dataclass
class DropInState:
    """Observed state of the managed drop-in."""
    path: Path
    dir_exists: bool
    file_exists: bool
    directives: dict[str, str]

    @property
    def hardened(self) -> bool:
        """Check if password authentication is disabled by the drop-in."""
        return self.directives.get(MARKER_KEY, "").lower() == MARKER_VALUE

    @property
    def needs_update(self) -> bool:
        """Check if the drop-in must be (re)written."""
        return self.dir_exists and (not self.file_exists or not self.hardened)


class SshHardening:
    """Ensures the SSH hardening drop-in is present and applied."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        systemd: Optional[SystemdService] = None,
        config: Optional[SshConfig] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.systemd = systemd or SystemdService(ctx, executor)
        self.config = config or ctx.config.ssh

    @property
    def dropin_path(self) -> Path:
        return self.config.dropin_path

    def render(self) -> str:
        """Render the drop-in content."""
        return render_template(
            "ssh/99-security.conf.j2",
            permit_root_login=self.config.permit_root_login,
        )

    def state(self) -> DropInState:
        """Read the current drop-in state."""
        path = self.dropin_path
        file_exists = path.is_file()
        directives = parse_sshd_config(path.read_text(errors="replace")) if file_exists else {}
        return DropInState(
            path=path,
            dir_exists=self.config.dropin_dir.is_dir(),
            file_exists=file_exists,
            directives=directives,
        )

    def converge(self) -> StageReport:
        """Write the drop-in and restart SSH, only if needed.

        A failed restart under every candidate unit name is recorded as a
        warning; the drop-in stays in place and takes effect on the next
        SSH restart.
        """
        report = StageReport(name="ssh")
        current = self.state()

        if not current.dir_exists:
            report.skipped = True
            report.warn(f"{self.config.dropin_dir} does not exist, drop-in not installed")
            self.ctx.console.warn(
                f"{self.config.dropin_dir} not found; this OpenSSH does not support drop-ins"
            )
            return report

        if not current.needs_update:
            self.ctx.console.info(f"{self.dropin_path} already disables password authentication")
            return report

        try:
            backup = self.executor.backup_file(self.dropin_path)
            if backup is not None:
                report.record(str(self.dropin_path), "backed up", str(backup))

            self.executor.write_file(
                self.dropin_path,
                self.render(),
                description=f"Writing {self.dropin_path}",
            )
        except OSError as e:
            report.warn(f"cannot write {self.dropin_path}: {e}")
            self.ctx.console.warn(f"Cannot write {self.dropin_path}: {e}")
            return report
        report.record(str(self.dropin_path), "written")

        try:
            unit = self.systemd.restart_first(self.config.service_names)
            report.record(f"service {unit}", "restarted")
            self.ctx.console.success("SSH hardened (drop-in)")
        except ServiceError as e:
            report.warn(e.message)
            self.ctx.console.warn(f"{e.message}; the drop-in applies on next SSH restart")
            if e.hint:
                self.ctx.console.hint(e.hint)

        return report
