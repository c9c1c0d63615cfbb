"""Per-invocation state shared by commands, services and the executor."""

import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from hostsec.core.config import HostConfig, DEFAULT_CONFIG_PATH
from hostsec.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Flags from the command line plus the lazily loaded host config.

    Creating a context configures the shared console, so output honours
    ``--dry-run``, ``--quiet``/``-v`` and ``--no-color`` from then on.
    """

    dry_run: bool = False
    yes: bool = False
    verbosity: int = Verbosity.NORMAL
    no_color: bool = False
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    _config: Optional[HostConfig] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
        )

    @property
    def config(self) -> HostConfig:
        """Host configuration, read from ``config_path`` on first use."""
        if self._config is None:
            self._config = HostConfig.load_or_default(self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        return self._console

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE

    @property
    def is_debug(self) -> bool:
        return self.verbosity >= Verbosity.DEBUG

    @property
    def should_confirm(self) -> bool:
        """Prompt before mutating unless -y was given or nothing will change."""
        return not (self.yes or self.dry_run)

    @property
    def mode(self) -> str:
        return "dry-run" if self.dry_run else "live"

    @property
    def hostname(self) -> str:
        """Name recorded in audit events; configurable for cloned images."""
        return self.config.hostname or socket.gethostname()


def create_context(
    dry_run: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Build the context for one CLI invocation.

    ``--quiet`` wins over any number of ``-v``.
    """
    verbosity = Verbosity.QUIET if quiet else min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)
    return ExecutionContext(
        dry_run=dry_run,
        yes=yes,
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
    )
