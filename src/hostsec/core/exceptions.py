"""Error hierarchy for hostsec.

Each error carries a message, an optional hint telling the operator what
to do next, optional detail lines, and the process exit code used when it
reaches the CLI. During ``hostsec harden`` only PackageError (and anything
raised before the first stage) ends the run; the later stages turn their
errors into warnings.
"""

from typing import Optional


class HostSecError(Exception):
    """Base class for every error hostsec reports to the operator.

    Attributes:
        message: One-line description
        hint: Suggested next step, if any
        details: Extra lines shown under the message
        exit_code: Process exit status (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = list(details or [])

    def __str__(self) -> str:
        return self.message


class ConfigurationError(HostSecError):
    """The config file is unreadable, not YAML, or fails validation."""
    exit_code = 2


class ValidationError(HostSecError):
    """A single value (duration, port, unit or package name) is malformed."""
    exit_code = 3


class ExecutionError(HostSecError):
    """An external command failed, timed out, or was not found.

    The exit status and stderr are appended to ``details`` so they show up
    wherever the error is printed.
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        lines = list(details or [])
        if return_code is not None:
            lines.append(f"Exit code: {return_code}")
        if stderr and stderr.strip():
            lines.append(f"Error output: {stderr.strip()}")
        super().__init__(message, hint=hint, details=lines)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class PrerequisiteError(HostSecError):
    """Not root, unsupported OS, missing tooling, or a failed pre-flight check."""
    exit_code = 6


class ServiceError(HostSecError):
    """systemctl could not reload, enable or restart a unit."""
    exit_code = 13

    def __init__(self, message: str, *, service: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.service = service


class PackageError(HostSecError):
    """apt could not refresh its cache or install a required package.

    This is the one stage failure that aborts ``hostsec harden``.
    """
    exit_code = 14

    def __init__(self, message: str, *, packages: Optional[list[str]] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.packages = list(packages or [])


class FirewallError(HostSecError):
    """A ufw command failed or its status output could not be read."""
    exit_code = 15

    def __init__(self, message: str, *, rule: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.rule = rule


class Fail2banError(HostSecError):
    """Jail files could not be written, or fail2ban-client failed."""
    exit_code = 16
