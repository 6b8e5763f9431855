"""Input validation utilities.

Provides validation for:
- API endpoint URLs
- Interval/timeout durations ("30s", "5m", "1m30s")
- Public IP addresses
- Absolute file paths

All validators return the validated value or raise ValidationError.
"""

import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse

from lsh_agent.core.exceptions import ValidationError


# Duration units accepted in configuration
DURATION_UNITS: dict[str, float] = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

DURATION_PATTERN = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")


def validate_url(
    value: str,
    require_https: bool = False,
    allowed_schemes: Optional[frozenset[str]] = None,
) -> str:
    """Validate a URL.

    Args:
        value: URL to validate
        require_https: If True, only HTTPS URLs are allowed
        allowed_schemes: Set of allowed schemes (default: http, https)

    Returns:
        The validated URL

    Raises:
        ValidationError: If validation fails
    """
    value = value.strip()

    if not allowed_schemes:
        allowed_schemes = frozenset({"http", "https"})

    try:
        parsed = urlparse(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid URL format: {value}",
            hint="Provide a valid URL",
            details=[str(e)],
        ) from e

    if not parsed.scheme:
        raise ValidationError(
            f"URL must include a scheme: {value}",
            hint=f"Use https://{value}",
        )

    if parsed.scheme.lower() not in allowed_schemes:
        raise ValidationError(
            f"URL scheme '{parsed.scheme}' not allowed",
            hint=f"Use one of: {', '.join(sorted(allowed_schemes))}",
        )

    if require_https and parsed.scheme.lower() != "https":
        raise ValidationError(
            "HTTPS is required for security",
            hint=f"Change {parsed.scheme}:// to https://",
        )

    if not parsed.netloc:
        raise ValidationError(
            f"URL must include a host: {value}",
            hint="Provide a complete URL like https://api.latitude.sh/agent/ping",
        )

    return value


def parse_duration(value: str) -> float:
    """Parse a duration string into seconds.

    Accepts a sequence of number+unit pairs, e.g. "30s", "5m", "1h",
    "1m30s", "500ms". A bare number is read as seconds.

    Raises:
        ValidationError: If the string is not a positive duration
    """
    text = str(value).strip().lower()

    if not text:
        raise ValidationError("Duration cannot be empty", hint="Use a value like 30s or 5m")

    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in DURATION_PATTERN.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * DURATION_UNITS[match.group(2)]
            pos = match.end()

        if pos != len(text) or pos == 0:
            raise ValidationError(
                f"Invalid duration: {value}",
                hint="Use a number followed by a unit (ms, s, m, h), e.g. 30s or 1m30s",
            )

    if seconds <= 0:
        raise ValidationError(
            f"Duration must be positive: {value}",
            hint="Use a value like 30s or 5m",
        )

    return seconds


def validate_duration(value: str) -> str:
    """Validate a duration string, returning it unchanged."""
    parse_duration(value)
    return str(value).strip()


def validate_ip_address(value: str) -> str:
    """Validate an IPv4 or IPv6 address.

    Args:
        value: Address to validate

    Returns:
        The validated address

    Raises:
        ValidationError: If the address is not valid
    """
    value = value.strip()

    try:
        ipaddress.ip_address(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid IP address: {value}",
            hint="Use the server's public address, e.g. 203.0.113.10",
            details=[str(e)],
        ) from e

    return value


def validate_path(value: str, must_be_absolute: bool = True) -> str:
    """Validate a file path with traversal prevention.

    Args:
        value: Path to validate
        must_be_absolute: Require absolute path

    Returns:
        The validated path

    Raises:
        ValidationError: If validation fails
    """
    dangerous_patterns = ["..", "\n", "\r", "\x00"]

    for pattern in dangerous_patterns:
        if pattern in value:
            raise ValidationError(
                f"Path contains dangerous pattern: {repr(pattern)}",
                hint="Use a simple path without special characters",
            )

    if must_be_absolute and not value.startswith("/"):
        raise ValidationError(
            f"Path must be absolute: {value}",
            hint=f"Use /{value}",
        )

    return value
