"""Service abstractions for the managed host components."""

from hostsec.services.systemd import SystemdService
from hostsec.services.packages import AptService
from hostsec.services.ufw import UfwService
from hostsec.services.sshd import SshHardening
from hostsec.services.fail2ban import Fail2banService

__all__ = [
    "SystemdService",
    "AptService",
    "UfwService",
    "SshHardening",
    "Fail2banService",
]
