"""Console output for hostsec, built on Rich.

Every message carries a level tag. Warnings and errors go to stderr and
are shown even in quiet mode; everything else respects the verbosity
level. Dry-run messages are only printed while dry-run is active.
"""

from enum import IntEnum
from typing import Any, Optional, Sequence

from rich import box
from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0    # Errors only
    NORMAL = 1
    VERBOSE = 2  # -v
    DEBUG = 3    # -vv, echoes every command


# level -> (style, tag, minimum verbosity, stderr)
LEVELS: dict[str, tuple[str, str, Verbosity, bool]] = {
    "info": ("green", "INFO", Verbosity.NORMAL, False),
    "success": ("green", "OK", Verbosity.NORMAL, False),
    "warn": ("yellow", "WARN", Verbosity.QUIET, True),
    "error": ("red", "ERROR", Verbosity.QUIET, True),
    "debug": ("cyan", "DEBUG", Verbosity.DEBUG, False),
}


def format_value(value: Any) -> str:
    """Render a table or summary cell. Booleans become coloured yes/no."""
    if isinstance(value, bool):
        return "[green]yes[/green]" if value else "[red]no[/red]"
    if value is None:
        return "[dim]unknown[/dim]"
    return str(value)


class Console:
    """Shared console used by every command and service.

    Configured once per invocation from the CLI flags through
    ``ExecutionContext``.
    """

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.dry_run = False
        self.no_color = False
        self._open()

    def _open(self) -> None:
        self._console = RichConsole(highlight=False, no_color=self.no_color)
        self._err_console = RichConsole(stderr=True, highlight=False, no_color=self.no_color)

    def configure(
        self,
        verbosity: int = 1,
        dry_run: bool = False,
        no_color: bool = False,
    ) -> None:
        """Apply CLI flags. Verbosity above DEBUG is clamped."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        self.dry_run = dry_run
        if no_color != self.no_color:
            self.no_color = no_color
            self._open()

    def _emit(self, level: str, message: str) -> None:
        style, tag, minimum, to_stderr = LEVELS[level]
        if self.verbosity < minimum:
            return
        target = self._err_console if to_stderr else self._console
        target.print(f"[{style}][{tag}][/{style}] {message}")

    def info(self, message: str) -> None:
        self._emit("info", message)

    def success(self, message: str) -> None:
        self._emit("success", message)

    def warn(self, message: str) -> None:
        self._emit("warn", message)

    def error(self, message: str) -> None:
        self._emit("error", message)

    def debug(self, message: str) -> None:
        self._emit("debug", message)

    def verbose(self, message: str) -> None:
        """Dim detail line, shown with -v."""
        if self.verbosity >= Verbosity.VERBOSE:
            self._console.print(f"[dim]{message}[/dim]")

    def step(self, message: str) -> None:
        """Announce the next action of a stage."""
        if self.verbosity >= Verbosity.NORMAL:
            self._console.print(f"[blue]->[/blue] {message}")

    def dry_run_msg(self, message: str) -> None:
        """Describe a mutation that dry-run mode skipped."""
        if self.dry_run:
            self._console.print(f"[blue][DRY-RUN][/blue] Would: {message}")

    def hint(self, message: str) -> None:
        self._console.print(f"[cyan]Hint:[/cyan] {message}")

    def check(self, label: str, ok: bool, detail: Optional[str] = None) -> None:
        """Print a pass/fail line for one diagnostic check."""
        if self.verbosity < Verbosity.NORMAL and ok:
            return
        mark = "[green]PASS[/green]" if ok else "[red]FAIL[/red]"
        suffix = f" [dim]({detail})[/dim]" if detail else ""
        self._console.print(f"  {mark} {label}{suffix}")

    def print(self, message: Any = "", **kwargs: Any) -> None:
        """Print raw text or a Rich renderable."""
        self._console.print(message, **kwargs)

    def rule(self, title: str = "") -> None:
        self._console.rule(title)

    def panel(
        self,
        content: str,
        title: Optional[str] = None,
        border_style: str = "blue",
    ) -> None:
        self._console.print(Panel(content, title=title, border_style=border_style))

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        caption: Optional[str] = None,
    ) -> None:
        """Print a table; cells go through ``format_value``."""
        table = Table(title=title, caption=caption, box=box.ROUNDED)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*(format_value(cell) for cell in row))
        self._console.print(table)

    def summary(self, title: str, items: dict[str, Any]) -> None:
        """Print key/value state of one resource in a panel."""
        content = "\n".join(
            f"[bold]{key}:[/bold] {format_value(value)}" for key, value in items.items()
        )
        self._console.print(Panel(content, title=title, border_style="blue"))

    def code(self, content: str, language: str = "text", title: Optional[str] = None) -> None:
        """Print file contents or command output verbatim in a panel."""
        syntax = Syntax(content, language, theme="monokai", line_numbers=False)
        self._console.print(Panel(syntax, title=title, border_style="green"))

    def yaml(self, yaml_text: str, title: str = "Configuration") -> None:
        self.code(yaml_text, language="yaml", title=title)

    def outcome(self, operation: str, ok: bool, details: dict[str, Any]) -> None:
        """Final panel of a run. Tolerated failures show as warnings, not failure."""
        if ok:
            title, border = f"{operation} - [green]SUCCESS[/green]", "green"
        else:
            title, border = f"{operation} - [yellow]COMPLETED WITH WARNINGS[/yellow]", "yellow"
        content = "\n".join(f"[bold]{key}:[/bold] {value}" for key, value in details.items())
        self._console.print(Panel(content, title=title, border_style=border))

    def status(self, message: str, spinner: str = "dots") -> Any:
        """Spinner context manager for waits such as the fail2ban socket poll."""
        return self._console.status(message, spinner=spinner)

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask a yes/no question. EOF or Ctrl+C counts as no."""
        suffix = "[Y/n]" if default else "[y/N]"
        try:
            answer = self._console.input(f"{message} {escape(suffix)}: ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            return False
        if not answer:
            return default
        return answer in ("y", "yes")


# Global console instance
console = Console()
