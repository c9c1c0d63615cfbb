"""Shared fixtures: a host config rooted in tmp_path and a stubbed command runner."""

import socket
from pathlib import Path
from typing import Generator, Optional

import pytest

from hostsec.core import audit
from hostsec.core.config import (
    AuditConfig,
    Fail2banConfig,
    HostConfig,
    SshConfig,
)
from hostsec.core.context import ExecutionContext
from hostsec.core.exceptions import ExecutionError
from hostsec.core.executor import CommandExecutor, CommandResult


class CommandStub:
    """Replacement for CommandExecutor.run keyed by command prefix.

    The most recently registered matching prefix wins. Unmatched commands
    succeed with empty output.
    """

    def __init__(self) -> None:
        self.responses: list[tuple[tuple[str, ...], str, int, Optional[Exception]]] = []
        self.calls: list[list[str]] = []

    def on(
        self,
        *prefix: str,
        stdout: str = "",
        rc: int = 0,
        error: Optional[Exception] = None,
    ) -> "CommandStub":
        self.responses.append((prefix, stdout, rc, error))
        return self

    def __call__(self, command: list[str], **kwargs) -> CommandResult:
        self.calls.append(list(command))
        for prefix, stdout, rc, error in reversed(self.responses):
            if tuple(command[:len(prefix)]) != prefix:
                continue
            if error is not None:
                raise error
            if rc != 0 and kwargs.get("check", True):
                raise ExecutionError(
                    f"Command failed: {' '.join(command)}",
                    command=" ".join(command),
                    return_code=rc,
                )
            return CommandResult(list(command), rc, stdout, "")
        return CommandResult(list(command), 0, "", "")

    def ran(self, *prefix: str) -> bool:
        return any(tuple(call[:len(prefix)]) == prefix for call in self.calls)

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if tuple(call[:len(prefix)]) == prefix)


@pytest.fixture(autouse=True)
def disable_audit_log() -> Generator[None, None, None]:
    """Keep tests from writing to /var/log."""
    audit.configure_audit_logger(enabled=False)
    yield
    audit._audit_logger = None


@pytest.fixture
def host_config(tmp_path: Path) -> HostConfig:
    """Configuration with every managed file under tmp_path."""
    ssh_dir = tmp_path / "ssh" / "sshd_config.d"
    ssh_dir.mkdir(parents=True)
    f2b_dir = tmp_path / "fail2ban"
    return HostConfig(
        ssh=SshConfig(dropin_dir=ssh_dir),
        fail2ban=Fail2banConfig(
            jail_dir=f2b_dir / "jail.d",
            jail_local=f2b_dir / "jail.local",
            socket_path=tmp_path / "run" / "fail2ban.sock",
            log_path=tmp_path / "log" / "fail2ban.log",
            settle_timeout=1.0,
            poll_interval=0.1,
        ),
        audit=AuditConfig(enabled=False, log_path=tmp_path / "audit.log"),
    )


@pytest.fixture
def ctx(host_config: HostConfig) -> ExecutionContext:
    return ExecutionContext(yes=True, _config=host_config)


@pytest.fixture
def control_socket(host_config: HostConfig) -> Generator[Path, None, None]:
    """Bind a real unix socket at the configured fail2ban control socket path."""
    path = host_config.fail2ban.socket_path
    path.parent.mkdir(parents=True, exist_ok=True)
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.bind(str(path))
    yield path
    sock.close()


@pytest.fixture
def stub() -> CommandStub:
    return CommandStub()


@pytest.fixture
def executor(ctx: ExecutionContext, stub: CommandStub) -> CommandExecutor:
    """Real executor (file writes hit tmp_path) with commands stubbed."""
    executor = CommandExecutor(ctx)
    executor.run = stub
    return executor
