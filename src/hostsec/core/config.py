"""Host configuration, loaded from YAML into Pydantic models.

The file is optional. Any setting left out falls back to the hardened
baseline defaults declared on the models below.
"""

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from hostsec.core.exceptions import ConfigurationError, ValidationError
from hostsec.core.validation import (
    validate_duration,
    validate_jail_name,
    validate_package_name,
    validate_path,
    validate_port,
    validate_unit_name,
)


DEFAULT_CONFIG_PATH = Path("/etc/hostsec/config.yaml")
DEFAULT_AUDIT_LOG_PATH = Path("/var/log/hostsec/audit.log")

Policy = Literal["allow", "deny", "reject"]
Backend = Literal["auto", "systemd", "pyinotify", "polling", "gamin"]


def _pydantic_check(validator, value, *args):
    """Run a hostsec validator, re-raising as ValueError for Pydantic."""
    try:
        return validator(value, *args)
    except ValidationError as e:
        raise ValueError(e.message) from e


def _conf_file_name(value: str, field: str) -> str:
    # sshd and fail2ban only include *.conf from their drop-in directories
    if "/" in value or not value.endswith(".conf"):
        raise ValueError(f"{field} must be a plain file name ending in .conf")
    return value


class PackagesConfig(BaseModel):
    """Packages the hardening run depends on."""

    required: list[str] = Field(
        default_factory=lambda: ["ufw", "fail2ban", "openssh-server"]
    )
    # fail2ban's systemd backend; missing on some minimal installs
    optional: list[str] = Field(default_factory=lambda: ["python3-systemd"])
    update_cache: bool = True

    @field_validator("required", "optional")
    @classmethod
    def validate_names(cls, v: list[str]) -> list[str]:
        return [_pydantic_check(validate_package_name, name) for name in v]


class FirewallConfig(BaseModel):
    enabled: bool = True
    ssh_app: str = "OpenSSH"
    ssh_port: int = 22
    default_incoming: Policy = "deny"
    default_outgoing: Policy = "allow"
    summary_lines: int = Field(default=8, ge=1)

    @field_validator("ssh_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        return _pydantic_check(validate_port, v)


class SshConfig(BaseModel):
    """Where the sshd drop-in goes and how sshd is restarted."""

    enabled: bool = True
    dropin_dir: Path = Path("/etc/ssh/sshd_config.d")
    dropin_name: str = "99-security.conf"
    # Debian/Ubuntu name first, RHEL-style name as fallback
    service_names: list[str] = Field(default_factory=lambda: ["ssh", "sshd"], min_length=1)
    # "yes" would reopen password logins for root
    permit_root_login: Literal["no", "prohibit-password", "forced-commands-only"] = "prohibit-password"

    @field_validator("dropin_dir")
    @classmethod
    def validate_dir(cls, v: Path) -> Path:
        return Path(_pydantic_check(validate_path, str(v)))

    @field_validator("dropin_name")
    @classmethod
    def validate_dropin_name(cls, v: str) -> str:
        return _conf_file_name(v, "dropin_name")

    @field_validator("service_names")
    @classmethod
    def validate_service_names(cls, v: list[str]) -> list[str]:
        return [_pydantic_check(validate_unit_name, name) for name in v]

    @property
    def dropin_path(self) -> Path:
        return self.dropin_dir / self.dropin_name


class Fail2banConfig(BaseModel):
    """The sshd jail, the files it lives in, and diagnostics timing."""

    enabled: bool = True
    service: str = "fail2ban"

    # Jail definition
    jail_name: str = "sshd"
    port: str = "ssh"
    filter: str = "sshd"
    backend: Backend = "systemd"
    mode: Literal["normal", "ddos", "extra", "aggressive"] = "aggressive"
    maxretry: int = Field(default=3, ge=1)
    findtime: str = "10m"
    bantime: str = "24h"

    # Files
    jail_dir: Path = Path("/etc/fail2ban/jail.d")
    jail_file: str = "sshd-aggressive.conf"
    jail_local: Path = Path("/etc/fail2ban/jail.local")
    fallback_backend: Backend = "auto"
    socket_path: Path = Path("/var/run/fail2ban/fail2ban.sock")
    log_path: Path = Path("/var/log/fail2ban.log")

    # Diagnostics
    log_lines: int = Field(default=20, ge=1)
    settle_timeout: float = Field(default=10.0, gt=0)
    poll_interval: float = Field(default=0.5, gt=0)

    @field_validator("jail_dir", "jail_local", "socket_path", "log_path")
    @classmethod
    def validate_paths(cls, v: Path) -> Path:
        return Path(_pydantic_check(validate_path, str(v)))

    @field_validator("jail_file")
    @classmethod
    def validate_jail_file(cls, v: str) -> str:
        return _conf_file_name(v, "jail_file")

    @field_validator("jail_name")
    @classmethod
    def validate_jail(cls, v: str) -> str:
        return _pydantic_check(validate_jail_name, v)

    @field_validator("service")
    @classmethod
    def validate_service(cls, v: str) -> str:
        return _pydantic_check(validate_unit_name, v)

    @field_validator("findtime", "bantime")
    @classmethod
    def validate_times(cls, v: str) -> str:
        return _pydantic_check(validate_duration, v)

    @property
    def jail_path(self) -> Path:
        return self.jail_dir / self.jail_file


class AuditConfig(BaseModel):
    enabled: bool = True
    log_path: Path = DEFAULT_AUDIT_LOG_PATH


def _read_yaml(path: Path) -> dict:
    try:
        data = yaml.safe_load(path.read_text())
    except FileNotFoundError:
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            hint="Create it with: hostsec config init",
        )
    except PermissionError:
        raise ConfigurationError(
            f"Cannot read configuration file: {path}",
            hint="Check file permissions or run with sudo",
        )
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ConfigurationError(
            f"Invalid YAML in configuration file: {path}",
            details=[str(e)],
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {path}")
    return data


class HostConfig(BaseModel):
    """Root model of ``/etc/hostsec/config.yaml``."""

    # Recorded in audit events; defaults to the system hostname
    hostname: Optional[str] = None

    packages: PackagesConfig = Field(default_factory=PackagesConfig)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)
    ssh: SshConfig = Field(default_factory=SshConfig)
    fail2ban: Fail2banConfig = Field(default_factory=Fail2banConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @classmethod
    def load(cls, path: Path) -> "HostConfig":
        """Load and validate a config file.

        Raises:
            ConfigurationError: If the file is missing, unreadable, not a
                YAML mapping, or has invalid values (one detail per field)
        """
        data = _read_yaml(path)
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration in {path}",
                details=[
                    f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                    for err in e.errors()
                ],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "HostConfig":
        """Like load(), but a missing file means all defaults."""
        path = path or DEFAULT_CONFIG_PATH
        return cls.load(path) if path.exists() else cls()

    def to_yaml(self) -> str:
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# hostsec configuration
# Every setting is optional; the values below are the defaults.

# Packages installed when missing
packages:
  required: [ufw, fail2ban, openssh-server]
  optional: [python3-systemd]  # failure to install is only a warning
  update_cache: true

# UFW firewall
firewall:
  enabled: true
  ssh_app: OpenSSH      # application profile tried first
  ssh_port: 22          # fallback rule: <port>/tcp
  default_incoming: deny
  default_outgoing: allow

# SSH daemon drop-in
ssh:
  enabled: true
  dropin_dir: /etc/ssh/sshd_config.d
  dropin_name: 99-security.conf
  service_names: [ssh, sshd]  # restarted in order, first success wins
  permit_root_login: prohibit-password

# fail2ban sshd jail
fail2ban:
  enabled: true
  jail_name: sshd
  backend: systemd
  mode: aggressive
  maxretry: 3
  findtime: 10m
  bantime: 24h
  settle_timeout: 10    # seconds to wait for the control socket
  poll_interval: 0.5

# Audit log of hardening runs
audit:
  enabled: true
  log_path: /var/log/hostsec/audit.log
"""


def init_config(path: Path, force: bool = False) -> None:
    """Write the example config to ``path``, readable by root only.

    Raises:
        ConfigurationError: If ``path`` exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(f"{path} already exists", hint="Pass --force to replace it")

    path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o600)
