"""Read-only view of every managed resource."""

from hostsec.core.context import ExecutionContext
from hostsec.core.exceptions import FirewallError
from hostsec.core.executor import CommandExecutor
from hostsec.services.fail2ban import Fail2banService
from hostsec.services.packages import AptService
from hostsec.services.sshd import SshHardening
from hostsec.services.systemd import SystemdService
from hostsec.services.ufw import UfwService


def run_status(ctx: ExecutionContext) -> None:
    """Print the state of packages, firewall, SSH drop-in and fail2ban."""
    cfg = ctx.config
    executor = CommandExecutor(ctx)
    systemd = SystemdService(ctx, executor)
    apt = AptService(ctx, executor)

    packages = [*cfg.packages.required, *cfg.packages.optional]
    ctx.console.table(
        "Packages",
        ["Package", "Installed"],
        [[pkg, apt.is_installed(pkg)] for pkg in packages],
    )

    ufw = UfwService(ctx, executor)
    try:
        fw = ufw.status()
        ctx.console.summary("Firewall (UFW)", {
            "Active": fw.active,
            "Default incoming": fw.default_incoming,
            "Default outgoing": fw.default_outgoing,
            "SSH allowed": fw.allows_ssh(cfg.firewall.ssh_port),
            "Rules": len(fw.added_rules or fw.rules),
        })
    except FirewallError as e:
        ctx.console.warn(f"Cannot read UFW status: {e.message}")

    ssh = SshHardening(ctx, executor, systemd)
    dropin = ssh.state()
    ctx.console.summary("SSH drop-in", {
        "Path": dropin.path,
        "Directory exists": dropin.dir_exists,
        "File exists": dropin.file_exists,
        "Password auth disabled": dropin.hardened,
    })

    fail2ban = Fail2banService(ctx, executor, systemd)
    jail_path = fail2ban.config.jail_path
    service = systemd.status(fail2ban.config.service)
    ctx.console.summary("fail2ban", {
        "Jail fragment": jail_path,
        "Fragment current": jail_path.is_file() and jail_path.read_bytes() == fail2ban.jail.render().encode(),
        "jail.local backend": fail2ban.jail_local_has_backend(),
        "Service enabled": service.enabled,
        "Service active": service.active,
        "Control socket": fail2ban.socket_exists(),
    })
