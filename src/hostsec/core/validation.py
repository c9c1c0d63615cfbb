"""Input validation utilities.

Provides validation for:
- fail2ban durations (bantime, findtime)
- Ports
- Debian package names
- systemd unit names and fail2ban jail names
- Absolute configuration paths (with traversal prevention)

All validators return the validated value or raise ValidationError.
"""

import re

from hostsec.core.exceptions import ValidationError


# fail2ban time abbreviations, longest first so "mo" wins over "m"
DURATION_UNITS: dict[str, int] = {
    "y": 31536000,
    "mo": 2592000,
    "w": 604800,
    "d": 86400,
    "h": 3600,
    "m": 60,
    "s": 1,
}

DURATION_PATTERN = re.compile(r"^(?:\d+(?:mo|[ywdhms])?)+$")
DURATION_TOKEN = re.compile(r"(\d+)(mo|[ywdhms])?")

# Debian policy: lowercase, digits, + - . ; at least two chars, starts alnum
PACKAGE_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9+.\-]+$")

UNIT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9:_.@\-]+$")

JAIL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


def validate_duration(value: str, field_name: str = "duration") -> str:
    """Validate a fail2ban duration such as ``10m``, ``24h`` or ``600``.

    ``-1`` (permanent) is accepted for ban times.

    Args:
        value: Duration string
        field_name: Name used in error messages

    Returns:
        The validated duration

    Raises:
        ValidationError: If the value is not a fail2ban duration
    """
    value = str(value).strip()

    if value == "-1":
        return value

    if not value or not DURATION_PATTERN.fullmatch(value):
        raise ValidationError(
            f"Invalid {field_name}: '{value}'",
            hint="Use seconds or a unit suffix, e.g. 600, 10m, 24h, 1d",
        )

    if duration_to_seconds(value) == 0:
        raise ValidationError(
            f"{field_name.capitalize()} must be greater than zero",
            hint="Use a positive duration such as 10m",
        )

    return value


def duration_to_seconds(value: str) -> int:
    """Convert a fail2ban duration to seconds (``-1`` stays ``-1``)."""
    value = str(value).strip()
    if value == "-1":
        return -1

    total = 0
    for amount, unit in DURATION_TOKEN.findall(value):
        total += int(amount) * DURATION_UNITS.get(unit or "s", 1)
    return total


def validate_port(value: int) -> int:
    """Validate a port number.

    Args:
        value: Port number to validate

    Returns:
        The validated port number

    Raises:
        ValidationError: If port is out of valid range
    """
    if not 1 <= value <= 65535:
        raise ValidationError(
            f"Invalid port number: {value}",
            hint="Port must be between 1 and 65535",
        )
    return value


def validate_package_name(value: str) -> str:
    """Validate a Debian package name."""
    if not PACKAGE_NAME_PATTERN.fullmatch(value or ""):
        raise ValidationError(
            f"Invalid package name: '{value}'",
            hint="Package names are lowercase letters, digits, '+', '-' and '.'",
        )
    return value


def validate_unit_name(value: str) -> str:
    """Validate a systemd unit name (with or without suffix)."""
    if not value or not UNIT_NAME_PATTERN.fullmatch(value):
        raise ValidationError(
            f"Invalid systemd unit name: '{value}'",
            hint="Use a plain unit name such as ssh or fail2ban.service",
        )
    return value


def validate_jail_name(value: str) -> str:
    """Validate a fail2ban jail (INI section) name."""
    if not value or not JAIL_NAME_PATTERN.fullmatch(value):
        raise ValidationError(
            f"Invalid jail name: '{value}'",
            hint="Jail names contain only letters, digits, '_' and '-'",
        )
    return value


def validate_path(value: str, must_start_with: str | None = None) -> str:
    """Validate an absolute file path with traversal prevention.

    Args:
        value: Path to validate
        must_start_with: Required path prefix

    Returns:
        The validated path

    Raises:
        ValidationError: If validation fails
    """
    dangerous_patterns = ["..", "$", "`", "|", ";", "&", "\n", "\r", "\x00"]

    for pattern in dangerous_patterns:
        if pattern in value:
            raise ValidationError(
                f"Path contains dangerous pattern: {repr(pattern)}",
                hint="Use a simple path without special characters",
            )

    if not value.startswith("/"):
        raise ValidationError(
            f"Path must be absolute: {value}",
            hint=f"Use /{value}",
        )

    if must_start_with and not value.startswith(must_start_with):
        raise ValidationError(
            f"Path must start with '{must_start_with}'",
            hint=f"Allowed paths start with: {must_start_with}",
        )

    return value
