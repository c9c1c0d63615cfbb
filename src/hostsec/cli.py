"""hostsec command line.

``harden`` mutates the host; ``diagnose`` and ``status`` only read it;
``config`` manages the YAML file the other commands load.
"""

import os
from pathlib import Path
from typing import Optional, Annotated

import typer
from rich.console import Console

from hostsec import __version__
from hostsec.core.audit import configure_audit_logger
from hostsec.core.context import ExecutionContext, create_context
from hostsec.core.output import console as app_console
from hostsec.core.config import (
    DEFAULT_CONFIG_PATH,
    HostConfig,
    get_example_config,
    init_config,
)
from hostsec.core.exceptions import HostSecError, PrerequisiteError
from hostsec.core.safety import run_preflight_checks


app = typer.Typer(
    name="hostsec",
    help="Idempotent SSH, firewall and fail2ban hardening for Debian/Ubuntu hosts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Create, inspect and validate the hostsec config file.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", help="Inspect the host and print every change without making it."),
]
YesOption = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Do not ask for confirmation before hardening."),
]
VerboseOption = Annotated[
    int,
    typer.Option("--verbose", "-v", count=True, help="More output; -vv also shows every command run."),
]
QuietOption = Annotated[
    bool,
    typer.Option("--quiet", "-q", help="Only print warnings and errors."),
]
NoColorOption = Annotated[
    bool,
    typer.Option("--no-color", help="Plain output without ANSI colours."),
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Config file to load (default {DEFAULT_CONFIG_PATH}).",
        dir_okay=False,
    ),
]


def version_callback(value: bool) -> None:
    if value:
        Console().print(f"hostsec version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """hostsec - host security hardening.

    Brings a Debian/Ubuntu host to a hardened baseline and keeps it there.
    Every run is safe to repeat; only what differs is changed.

    [bold]Examples:[/bold]
        hostsec harden --dry-run
        sudo hostsec harden -y
        sudo hostsec diagnose
        hostsec config show
    """


def handle_error(error: HostSecError) -> None:
    """Print a HostSecError with its details and hint, then exit with its code."""
    app_console.error(error.message)
    for detail in error.details:
        app_console.print(f"  [dim]{detail}[/dim]")
    if error.hint:
        app_console.hint(error.hint)
    raise typer.Exit(error.exit_code)


def _setup_audit(ctx: ExecutionContext) -> None:
    cfg = ctx.config.audit
    configure_audit_logger(log_path=cfg.log_path, enabled=cfg.enabled)


def _show_plan(ctx: ExecutionContext, firewall: bool, ssh: bool, fail2ban: bool) -> None:
    cfg = ctx.config
    plan = {
        "Packages": ", ".join(cfg.packages.required),
        "Firewall": f"deny incoming, allow {cfg.firewall.ssh_app}, enable" if firewall else "skip",
        "SSH": f"write {cfg.ssh.dropin_path}" if ssh else "skip",
        "fail2ban": (
            f"jail {cfg.fail2ban.jail_name}: maxretry {cfg.fail2ban.maxretry}, "
            f"findtime {cfg.fail2ban.findtime}, bantime {cfg.fail2ban.bantime}"
            if fail2ban else "skip"
        ),
    }
    ctx.console.summary("Host Hardening Plan", plan)


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Print the effective configuration (defaults when the file is missing)."""
    ctx = create_context(no_color=no_color, config=config)
    try:
        source = ctx.config_path if ctx.config_path.exists() else "built-in defaults"
        ctx.console.info(f"Loaded from: {source}")
        ctx.console.yaml(ctx.config.to_yaml(), title=str(ctx.config_path))
    except HostSecError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: Annotated[bool, typer.Option("--force", "-f", help="Replace an existing file.")] = False,
    no_color: NoColorOption = False,
) -> None:
    """Write a commented config file with the default values."""
    ctx = create_context(no_color=no_color, config=config)
    path = ctx.config_path

    if path.exists() and not force:
        ctx.console.error(f"{path} already exists")
        ctx.console.hint("Pass --force to replace it")
        raise typer.Exit(1)

    try:
        init_config(path, force=force)
    except HostSecError as e:
        handle_error(e)
    ctx.console.success(f"Wrote {path}")


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Check that the config file exists, parses and passes validation."""
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)
    try:
        host_config = HostConfig.load(ctx.config_path)
    except HostSecError as e:
        handle_error(e)
        return

    ctx.console.success(f"{ctx.config_path} is valid")
    if ctx.is_verbose:
        ctx.console.yaml(host_config.to_yaml())

    stages = {
        "firewall": host_config.firewall.enabled,
        "ssh": host_config.ssh.enabled,
        "fail2ban": host_config.fail2ban.enabled,
    }
    for stage, enabled in stages.items():
        if not enabled:
            ctx.console.warn(f"The {stage} stage is disabled")


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print a complete example config file."""
    ctx = create_context(no_color=no_color)
    ctx.console.print(get_example_config(), markup=False, highlight=False)


# ============================================================================
# Host commands
# ============================================================================

@app.command("harden")
def harden_cmd(
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
    skip_firewall: Annotated[
        bool,
        typer.Option("--skip-firewall", help="Leave UFW untouched."),
    ] = False,
    skip_ssh: Annotated[
        bool,
        typer.Option("--skip-ssh", help="Do not write the SSH drop-in."),
    ] = False,
    skip_fail2ban: Annotated[
        bool,
        typer.Option("--skip-fail2ban", help="Skip the fail2ban jail and diagnostics."),
    ] = False,
    settle_timeout: Annotated[
        Optional[float],
        typer.Option(
            "--settle-timeout",
            min=0,
            help="Seconds to wait for the fail2ban control socket after restart.",
        ),
    ] = None,
) -> None:
    """Apply the host hardening baseline.

    - Installs ufw, fail2ban and openssh-server when missing
    - UFW: deny incoming, allow outgoing, SSH allowed, active
    - SSH: password and keyboard-interactive authentication disabled
    - fail2ban: aggressive sshd jail, then diagnostics

    Only a failed package installation stops the run; every later problem
    is reported as a warning.

    [bold]Examples:[/bold]

        hostsec harden --dry-run
        sudo hostsec harden -y
        sudo hostsec harden --skip-firewall
    """
    from hostsec.commands.harden import run_harden

    ctx = create_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )

    if not dry_run and os.geteuid() != 0:
        ctx.console.error("hostsec harden must run as root")
        ctx.console.hint("Run with sudo, or preview with --dry-run")
        raise typer.Exit(PrerequisiteError.exit_code)

    try:
        cfg = ctx.config
        _setup_audit(ctx)
        run_preflight_checks(dry_run=dry_run, verbose=ctx.is_verbose, dropin_dir=cfg.ssh.dropin_dir)

        _show_plan(
            ctx,
            firewall=cfg.firewall.enabled and not skip_firewall,
            ssh=cfg.ssh.enabled and not skip_ssh,
            fail2ban=cfg.fail2ban.enabled and not skip_fail2ban,
        )

        if ctx.should_confirm and not ctx.console.confirm("Apply these changes?"):
            ctx.console.warn("Hardening cancelled")
            raise typer.Exit(0)

        run_harden(
            ctx,
            skip_firewall=skip_firewall,
            skip_ssh=skip_ssh,
            skip_fail2ban=skip_fail2ban,
            settle_timeout=settle_timeout,
        )
    except HostSecError as e:
        handle_error(e)


@app.command("diagnose")
def diagnose_cmd(
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Run the fail2ban diagnostics without changing anything.

    Checks the control socket, the sshd jail, the service, recent log
    lines and the configuration self-test.
    """
    from hostsec.commands.diagnose import run_diagnose

    ctx = create_context(verbose=verbose, no_color=no_color, config=config)
    try:
        _setup_audit(ctx)
        run_diagnose(ctx)
    except HostSecError as e:
        handle_error(e)


@app.command("status")
def status_cmd(
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Show the state of every managed resource without changing anything."""
    from hostsec.commands.status import run_status

    ctx = create_context(verbose=verbose, no_color=no_color, config=config)
    try:
        run_status(ctx)
    except HostSecError as e:
        handle_error(e)


if __name__ == "__main__":
    app()
