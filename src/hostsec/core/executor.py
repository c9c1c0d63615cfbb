"""Command runner and file mutations, all gated on dry-run.

Every change hostsec makes to a host goes through CommandExecutor: a
subprocess call marked ``mutating``, a fragment write, an append, or a
backup copy. In dry-run mode these print what they would do and return
without touching anything. Read-only queries (``mutating=False``) always
run so that dry-run can still compare against real state.
"""

import os
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from hostsec.core.context import ExecutionContext
from hostsec.core.exceptions import ExecutionError
from hostsec.core.files import AtomicFileWriter, CONFIG_FILE_PERMS


COMMAND_NOT_FOUND = 127
PREVIEW_CHARS = 500


@dataclass
class CommandResult:
    """Exit status and captured output of one command."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.return_code == 0

    @classmethod
    def skipped(cls, command: list[str]) -> "CommandResult":
        """Stand-in for a mutating command not run in dry-run mode."""
        return cls(command, 0, "", "")


class CommandExecutor:
    """Runs commands and writes files on behalf of the hardening stages."""

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        timeout: Optional[int] = None,
        env: Optional[dict[str, str]] = None,
        mutating: bool = True,
    ) -> CommandResult:
        """Run a command with captured text output.

        Args:
            command: argv list, never passed through a shell
            description: Step message printed before running
            check: Raise on non-zero exit (or a missing binary)
            timeout: Seconds before the command is abandoned
            env: Variables added to the inherited environment
            mutating: False for queries that are safe to run in dry-run

        Returns:
            CommandResult; a zero-exit placeholder for skipped mutations

        Raises:
            ExecutionError: On timeout, or on failure when check=True
        """
        if description:
            self.ctx.console.step(description)

        shown = shlex.join(command)
        if self.ctx.dry_run and mutating:
            self.ctx.console.dry_run_msg(f"Run: {shown}")
            return CommandResult.skipped(command)
        self.ctx.console.debug(f"Running: {shown}")

        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
                env={**os.environ, **env} if env else None,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"Command timed out after {timeout}s: {description or shown}",
                command=shown,
            )
        except FileNotFoundError:
            if check:
                raise ExecutionError(
                    f"Command not found: {command[0]}",
                    command=shown,
                    return_code=COMMAND_NOT_FOUND,
                    hint=f"Install the package providing {command[0]}",
                )
            return CommandResult(command, COMMAND_NOT_FOUND, "", f"{command[0]}: command not found")

        result = CommandResult(command, proc.returncode, proc.stdout, proc.stderr)
        if result.stderr and self.ctx.is_debug:
            self.ctx.console.debug(f"stderr: {result.stderr.strip()}")

        if check and not result.success:
            raise ExecutionError(
                f"Command failed: {description or shown}",
                command=shown,
                return_code=result.return_code,
                stderr=result.stderr,
            )
        return result

    def write_file(
        self,
        path: Path,
        content: str,
        *,
        description: Optional[str] = None,
        permissions: int = CONFIG_FILE_PERMS,
    ) -> None:
        """Replace ``path`` atomically, creating parent directories."""
        self.ctx.console.step(description or f"Write {path}")

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Write {len(content)} bytes to {path}")
            if self.ctx.is_verbose:
                preview = content if len(content) <= PREVIEW_CHARS else content[:PREVIEW_CHARS] + "..."
                self.ctx.console.print(preview, markup=False, style="dim")
            return

        with AtomicFileWriter(path, permissions=permissions).open() as f:
            f.write(content)

    def append_file(self, path: Path, content: str, *, description: Optional[str] = None) -> None:
        """Append to ``path``; existing lines are never rewritten.

        A newline is inserted first when the file does not end with one.
        """
        self.ctx.console.step(description or f"Append to {path}")

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Append {len(content)} bytes to {path}")
            return

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a+b") as f:
            separator = b""
            if f.seek(0, os.SEEK_END) > 0:
                f.seek(-1, os.SEEK_END)
                if f.read(1) != b"\n":
                    separator = b"\n"
            f.write(separator + content.encode())

    def backup_file(self, path: Path, *, suffix: str = ".bak") -> Optional[Path]:
        """Copy ``path`` to ``<name>.<timestamp><suffix>`` beside it.

        The suffix keeps backups out of ``*.conf`` include globs.

        Returns:
            The backup path, or None when ``path`` does not exist
        """
        if not path.exists():
            return None

        backup = path.with_name(f"{path.name}.{time.strftime('%Y%m%d_%H%M%S')}{suffix}")
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Backup {path} to {backup}")
        else:
            shutil.copy2(path, backup)
            self.ctx.console.debug(f"Backed up {path} to {backup}")
        return backup
