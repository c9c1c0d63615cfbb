"""
hostsec - Idempotent host hardening CLI.

Converges a Debian/Ubuntu host to a hardened baseline: UFW firewall,
SSH drop-in configuration and a fail2ban jail for sshd, followed by
fail2ban diagnostics.
"""

__version__ = "1.0.0"
__author__ = "hostsec maintainers"
