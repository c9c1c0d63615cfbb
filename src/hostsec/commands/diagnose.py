"""fail2ban diagnostics command implementation.

Runs one read-only diagnostics pass: control socket, jail status,
service status, log tail and configuration self-test.
"""

from hostsec.core.audit import AuditEventType, AuditResult, get_audit_logger
from hostsec.core.context import ExecutionContext
from hostsec.core.executor import CommandExecutor
from hostsec.core.reconcile import StageReport
from hostsec.core.safety import require_root
from hostsec.services.fail2ban import TROUBLESHOOTING_HINTS, Diagnostics, Fail2banService


def diagnostics_report(diag: Diagnostics) -> StageReport:
    """Convert unhealthy diagnostics into report warnings."""
    report = StageReport(name="diagnostics")
    if not diag.socket_present:
        report.warn("fail2ban control socket missing")
    elif diag.jail_status is None:
        report.warn(diag.jail_error or f"jail {diag.jail} status unavailable")
    if not diag.self_test_ok:
        report.warn("fail2ban configuration self-test failed")
    return report


def display_diagnostics(ctx: ExecutionContext, diag: Diagnostics) -> None:
    """Print a diagnostics pass."""
    console = ctx.console
    console.print()
    console.rule("fail2ban diagnostics")

    console.check("Control socket", diag.socket_present, None if diag.socket_present else "daemon not running")

    if diag.jail_status is not None:
        jail = diag.jail_status
        console.summary(f"Jail: {jail.name}", {
            "Currently failed": jail.currently_failed,
            "Total failed": jail.total_failed,
            "Currently banned": jail.currently_banned,
            "Total banned": jail.total_banned,
            "Banned IPs": ", ".join(jail.banned_ips) or "none",
            "Monitoring": ", ".join(jail.file_list) or jail.journal_matches or "journal",
        })
    elif diag.socket_present:
        console.check(f"Jail {diag.jail}", False, diag.jail_error)

    if diag.service_status is not None:
        status = diag.service_status
        console.verbose(
            f"{status.name}: {status.active_state} ({status.sub_state}), "
            f"unit file {status.unit_file_state}, pid {status.pid or '-'}"
        )
    if diag.status_text:
        console.code(diag.status_text, title="systemctl status fail2ban")

    if diag.log_lines:
        console.code(
            "\n".join(diag.log_lines),
            title=f"Last {len(diag.log_lines)} lines of {diag.log_path}",
        )
    else:
        console.info("No fail2ban log entries yet")

    console.check("Configuration self-test", diag.self_test_ok)
    if not diag.self_test_ok:
        if diag.self_test_output:
            console.code(diag.self_test_output, title="fail2ban-client -t")
        console.hint("Check: journalctl -u fail2ban -n 60")

    if not diag.healthy:
        console.panel(
            "\n".join(f"- {hint}" for hint in TROUBLESHOOTING_HINTS),
            title="Troubleshooting",
            border_style="yellow",
        )


@require_root
def run_diagnose(ctx: ExecutionContext) -> Diagnostics:
    """Run fail2ban diagnostics without changing anything."""
    service = Fail2banService(ctx, CommandExecutor(ctx))
    diag = service.diagnose()
    display_diagnostics(ctx, diag)

    get_audit_logger().log_run(
        AuditEventType.DIAGNOSTICS,
        AuditResult.SUCCESS if diag.healthy else AuditResult.PARTIAL,
        ctx.hostname,
        parameters={
            "socket_present": diag.socket_present,
            "jail_ok": diag.jail_status is not None,
            "self_test_ok": diag.self_test_ok,
        },
    )
    return diag
