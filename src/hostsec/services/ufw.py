"""UFW firewall convergence.

Reads the firewall state through ``ufw status verbose`` and ``ufw show
added`` into structured values, then applies only what differs from the
desired baseline: SSH allowed, deny incoming, allow outgoing, active.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from hostsec.core.config import FirewallConfig
from hostsec.core.context import ExecutionContext
from hostsec.core.executor import CommandExecutor, CommandResult
from hostsec.core.exceptions import ExecutionError, FirewallError
from hostsec.core.reconcile import StageReport


DEFAULT_POLICY_PATTERN = re.compile(r"(\w+) \((incoming|outgoing|routed)\)")
RULE_COLUMNS_PATTERN = re.compile(r"\s{2,}")

SSH_APP_NAMES = frozenset({"openssh", "ssh"})
ALLOWING_ACTIONS = frozenset({"allow", "limit"})


@dataclass
class UfwRule:
    """A UFW rule, either from the status table or from ``ufw show added``.

    Attributes:
        to: Destination column / target (e.g. "22/tcp", "OpenSSH")
        action: Lowercase action ("allow", "deny", "limit", "reject")
        source: Source column ("Anywhere" for added rules)
        v6: Whether this is the IPv6 twin of a rule
        args: Raw ufw arguments for added rules
    """
    to: str
    action: str
    source: str = "Anywhere"
    v6: bool = False
    args: list[str] = field(default_factory=list)

    def allows_port(self, port: int, app_names: frozenset[str] = SSH_APP_NAMES) -> bool:
        """Check if this rule lets TCP traffic reach ``port``."""
        if self.action not in ALLOWING_ACTIONS:
            return False

        target = self.to.lower()
        if target in app_names:
            return True
        if target in (str(port), f"{port}/tcp"):
            return True

        # Extended syntax: ufw allow [in] [on IF] [from X] to any port 22 [proto tcp]
        tokens = [t.lower() for t in self.args]
        if "port" in tokens:
            idx = tokens.index("port")
            if idx + 1 < len(tokens) and tokens[idx + 1] == str(port):
                if "proto" in tokens:
                    pidx = tokens.index("proto")
                    return pidx + 1 < len(tokens) and tokens[pidx + 1] == "tcp"
                return True
        if "app" in tokens:
            idx = tokens.index("app")
            return idx + 1 < len(tokens) and tokens[idx + 1] in app_names
        return False

    def __str__(self) -> str:
        if self.args:
            return "ufw " + " ".join(self.args)
        return f"{self.to} {self.action.upper()} {self.source}"


@dataclass
class UfwStatus:
    """Structured UFW state.

    ``rules`` come from the status table (only populated when active);
    ``added_rules`` come from ``ufw show added`` and are available even
    while the firewall is inactive.
    """
    active: bool
    default_incoming: Optional[str] = None
    default_outgoing: Optional[str] = None
    default_routed: Optional[str] = None
    rules: list[UfwRule] = field(default_factory=list)
    added_rules: list[UfwRule] = field(default_factory=list)

    def allows_ssh(self, port: int = 22, app_names: frozenset[str] = SSH_APP_NAMES) -> bool:
        """Check if any known rule allows SSH."""
        return any(
            rule.allows_port(port, app_names)
            for rule in (*self.added_rules, *self.rules)
        )


def parse_status(output: str) -> UfwStatus:
    """Parse ``ufw status verbose`` output."""
    status = UfwStatus(active=False)
    in_table = False

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        if line.startswith("Status:"):
            status.active = line.split(":", 1)[1].strip().lower() == "active"
            continue

        if line.startswith("Default:"):
            for policy, direction in DEFAULT_POLICY_PATTERN.findall(line):
                setattr(status, f"default_{direction}", policy.lower())
            continue

        if line.startswith("To") and "Action" in line:
            continue
        if set(line) <= {"-", " "}:
            in_table = True
            continue

        if in_table:
            rule = _parse_table_row(line)
            if rule is not None:
                status.rules.append(rule)

    return status


def _parse_table_row(line: str) -> Optional[UfwRule]:
    columns = RULE_COLUMNS_PATTERN.split(line)
    if len(columns) < 3:
        return None

    to, action, source = columns[0], columns[1], columns[2]
    v6 = "(v6)" in to
    to = to.replace("(v6)", "").strip()
    # "ALLOW IN" / "ALLOW OUT" / "LIMIT"
    action = action.split()[0].lower()
    return UfwRule(to=to, action=action, source=source, v6=v6)


def parse_added(output: str) -> list[UfwRule]:
    """Parse ``ufw show added`` output into rules."""
    rules = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line.startswith("ufw "):
            continue
        args = line.split()[1:]
        if not args:
            continue
        action = args[0].lower()
        rest = [a for a in args[1:] if a.lower() not in ("in", "out")]
        to = rest[0] if len(rest) == 1 else " ".join(rest)
        rules.append(UfwRule(to=to, action=action, args=args))
    return rules


class UfwService:
    """Converges UFW to the configured baseline."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        config: Optional[FirewallConfig] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.config = config or ctx.config.firewall

    def _ufw(
        self,
        *args: str,
        description: Optional[str] = None,
        mutating: bool = True,
    ) -> CommandResult:
        try:
            return self.executor.run(
                ["ufw", *args],
                description=description,
                mutating=mutating,
            )
        except ExecutionError as e:
            raise FirewallError(
                e.message,
                rule=" ".join(args),
                details=e.details,
                hint=e.hint,
            ) from e

    # State queries
    def status(self) -> UfwStatus:
        """Read the structured firewall state.

        Raises:
            FirewallError: If ufw cannot be queried
        """
        status = parse_status(self._ufw("status", "verbose", mutating=False).stdout)
        try:
            status.added_rules = parse_added(self._ufw("show", "added", mutating=False).stdout)
        except FirewallError as e:
            # Older ufw releases lack "show added"; the status table still works
            self.ctx.console.debug(f"ufw show added unavailable: {e.message}")
        return status

    def summary(self, lines: Optional[int] = None) -> str:
        """First lines of ``ufw status`` for display."""
        count = lines or self.config.summary_lines
        result = self._ufw("status", mutating=False)
        return "\n".join(result.stdout.splitlines()[:count])

    # Mutations
    def allow_ssh(self) -> str:
        """Allow SSH by application profile, falling back to port/tcp.

        Returns:
            The rule that was added

        Raises:
            FirewallError: If neither rule can be added
        """
        try:
            self._ufw("allow", self.config.ssh_app, description=f"Allowing {self.config.ssh_app}")
            return self.config.ssh_app
        except FirewallError as e:
            self.ctx.console.verbose(f"Profile {self.config.ssh_app} unavailable: {e.message}")

        fallback = f"{self.config.ssh_port}/tcp"
        self._ufw("allow", fallback, description=f"Allowing {fallback}")
        return fallback

    def set_default(self, policy: str, direction: str) -> None:
        """Set a default policy (naturally idempotent)."""
        self._ufw("default", policy, direction, description=f"Default {direction}: {policy}")

    def enable(self) -> None:
        """Enable the firewall without the interactive prompt."""
        self._ufw("--force", "enable", description="Enabling UFW")

    def reload(self) -> None:
        """Reload rules of an active firewall."""
        self._ufw("reload", description="Reloading UFW")

    def converge(self) -> StageReport:
        """Bring the firewall to the baseline.

        Every failure is tolerated and recorded as a warning.
        """
        report = StageReport(name="firewall")
        cfg = self.config

        try:
            current = self.status()
        except FirewallError as e:
            report.warn(f"cannot read ufw status: {e.message}")
            self.ctx.console.warn(f"Cannot read UFW status: {e.message}")
            return report

        # 1. SSH exception, added before enabling so the session survives
        if current.allows_ssh(cfg.ssh_port, frozenset({cfg.ssh_app.lower(), *SSH_APP_NAMES})):
            self.ctx.console.verbose("SSH already allowed in UFW")
        else:
            try:
                rule = self.allow_ssh()
                report.record("ufw rule", "allow", rule)
                self.ctx.console.success(f"SSH allowed in UFW ({rule})")
            except FirewallError as e:
                report.warn(f"could not allow SSH: {e.message}")
                self.ctx.console.warn(f"Could not allow SSH in UFW: {e.message}")

        # 2. Default policies, reissued every run
        for direction, policy, before in (
            ("incoming", cfg.default_incoming, current.default_incoming),
            ("outgoing", cfg.default_outgoing, current.default_outgoing),
        ):
            try:
                self.set_default(policy, direction)
                if before != policy:
                    report.record(f"ufw default {direction}", policy, f"was {before or 'unknown'}")
            except FirewallError as e:
                report.warn(f"could not set default {direction} policy: {e.message}")
                self.ctx.console.warn(f"Could not set default {direction} policy: {e.message}")

        # 3. Activation: enable only when inactive, otherwise reload
        try:
            if current.active:
                self.reload()
            else:
                self.enable()
                report.record("ufw", "enabled")
                self.ctx.console.success("UFW enabled")
        except FirewallError as e:
            report.warn(f"could not activate ufw: {e.message}")
            self.ctx.console.warn(f"Could not activate UFW: {e.message}")

        if not self.ctx.dry_run:
            try:
                self.ctx.console.code(self.summary(), title="UFW status")
            except FirewallError as e:
                self.ctx.console.verbose(f"Cannot show UFW summary: {e.message}")

        return report
