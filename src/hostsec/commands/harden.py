"""Host hardening command implementation.

This module implements the `hostsec harden` command which:
- Installs missing packages (ufw, fail2ban, openssh-server)
- Converges UFW to deny incoming, allow outgoing, SSH allowed, active
- Disables SSH password authentication through a drop-in
- Configures the fail2ban sshd jail and runs diagnostics

Only a failed installation of required packages aborts the run. Every
later failure is recorded as a warning and the run continues to the
diagnostics.
"""

from typing import Optional

from hostsec.core.audit import AuditEventType, AuditResult, get_audit_logger
from hostsec.core.context import ExecutionContext
from hostsec.core.exceptions import HostSecError
from hostsec.core.executor import CommandExecutor
from hostsec.core.reconcile import HardenReport, StageReport
from hostsec.commands.diagnose import diagnostics_report, display_diagnostics
from hostsec.services.fail2ban import Diagnostics, Fail2banService
from hostsec.services.packages import AptService
from hostsec.services.sshd import SshHardening
from hostsec.services.systemd import SystemdService
from hostsec.services.ufw import UfwService


class HostHardener:
    """Runs the hardening stages in order."""

    def __init__(self, ctx: ExecutionContext):
        self.ctx = ctx
        self.executor = CommandExecutor(ctx)
        self.systemd = SystemdService(ctx, self.executor)
        self.apt = AptService(ctx, self.executor)
        self.ufw = UfwService(ctx, self.executor)
        self.ssh = SshHardening(ctx, self.executor, self.systemd)
        self.fail2ban = Fail2banService(ctx, self.executor, self.systemd)

    def ensure_dependencies(self) -> StageReport:
        """Install missing packages.

        Raises:
            PackageError: If a required package cannot be installed
        """
        self.ctx.console.step("Ensuring dependencies")
        cfg = self.ctx.config.packages
        report = StageReport(name="packages")

        installed = self.apt.ensure(cfg.required, update_cache=cfg.update_cache, report=report)
        if installed:
            self.ctx.console.success(f"Installed: {', '.join(installed)}")
        else:
            self.ctx.console.info("Required packages already installed")

        if cfg.optional:
            self.apt.ensure_optional(cfg.optional, update_cache=cfg.update_cache, report=report)
        return report

    def configure_firewall(self) -> StageReport:
        """Converge UFW to the baseline."""
        self.ctx.console.step("Configuring UFW")
        return self.ufw.converge()

    def harden_ssh(self) -> StageReport:
        """Install the SSH hardening drop-in."""
        self.ctx.console.step("Hardening SSH")
        return self.ssh.converge()

    def configure_fail2ban(self, settle_timeout: Optional[float] = None) -> StageReport:
        """Write the sshd jail and (re)start fail2ban."""
        self.ctx.console.step("Configuring fail2ban")
        return self.fail2ban.converge(settle_timeout)

    def run_diagnostics(self) -> Diagnostics:
        """Run one fail2ban diagnostics pass."""
        self.ctx.console.step("Running fail2ban diagnostics")
        return self.fail2ban.diagnose()


def _audit_stage(ctx: ExecutionContext, stage: StageReport) -> None:
    audit = get_audit_logger()
    for change in stage.changes:
        audit.log_change(stage.name, change, dry_run=ctx.dry_run)


def display_report(ctx: ExecutionContext, report: HardenReport) -> None:
    """Print the per-stage outcome and any warnings."""
    ctx.console.print()
    ctx.console.table(
        "Hardening Stages",
        ["Stage", "Result"],
        [[stage.name, stage.summary_line()] for stage in report.stages],
    )

    for warning in report.warnings:
        ctx.console.warn(warning)

    if ctx.is_verbose:
        for stage in report.stages:
            for change in stage.changes:
                ctx.console.print(f"  [dim]{stage.name}: {change}[/dim]")

    ctx.console.outcome("Host hardening", report.ok, {
        "Changes applied": sum(len(s.changes) for s in report.stages),
        "Warnings": len(report.warnings),
        "Mode": ctx.mode,
    })


def run_harden(
    ctx: ExecutionContext,
    skip_firewall: bool = False,
    skip_ssh: bool = False,
    skip_fail2ban: bool = False,
    settle_timeout: Optional[float] = None,
) -> HardenReport:
    """Run the hardening stages.

    Args:
        ctx: Execution context
        skip_firewall: Skip the UFW stage
        skip_ssh: Skip the SSH drop-in stage
        skip_fail2ban: Skip the fail2ban stage and its diagnostics
        settle_timeout: Seconds to wait for the fail2ban socket

    Returns:
        Aggregated report of every stage

    Raises:
        PackageError: If a required package cannot be installed
    """
    hardener = HostHardener(ctx)
    audit = get_audit_logger()
    cfg = ctx.config
    hostname = ctx.hostname
    report = HardenReport()

    with audit.correlation("harden"):
        try:
            stage = report.add(hardener.ensure_dependencies())
            _audit_stage(ctx, stage)
        except HostSecError as e:
            audit.log_run(AuditEventType.HARDEN_RUN, AuditResult.FAILURE, hostname, error=str(e))
            raise

        if skip_firewall or not cfg.firewall.enabled:
            report.add(StageReport(name="firewall", skipped=True))
        else:
            _audit_stage(ctx, report.add(hardener.configure_firewall()))

        if skip_ssh or not cfg.ssh.enabled:
            report.add(StageReport(name="ssh", skipped=True))
        else:
            _audit_stage(ctx, report.add(hardener.harden_ssh()))

        if skip_fail2ban or not cfg.fail2ban.enabled:
            report.add(StageReport(name="fail2ban", skipped=True))
        else:
            _audit_stage(ctx, report.add(hardener.configure_fail2ban(settle_timeout)))
            diag = hardener.run_diagnostics()
            display_diagnostics(ctx, diag)
            report.add(diagnostics_report(diag))

        if ctx.dry_run:
            result = AuditResult.DRY_RUN
        elif report.ok:
            result = AuditResult.SUCCESS
        else:
            result = AuditResult.PARTIAL

        audit.log_run(
            AuditEventType.HARDEN_RUN,
            result,
            hostname,
            parameters={
                "changed": report.changed,
                "stages": [s.name for s in report.stages if not s.skipped],
            },
            detail="; ".join(report.warnings) or None,
        )

    display_report(ctx, report)
    return report
