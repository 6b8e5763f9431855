"""Unit tests for the validation module."""

import pytest

from lsh_agent.core.validation import (
    parse_duration,
    validate_duration,
    validate_ip_address,
    validate_path,
    validate_url,
)
from lsh_agent.core.exceptions import ValidationError


class TestParseDuration:
    """Tests for duration parsing."""

    def test_simple_units(self):
        """Single number+unit pairs should convert to seconds."""
        assert parse_duration("30s") == 30
        assert parse_duration("5m") == 300
        assert parse_duration("1h") == 3600
        assert parse_duration("500ms") == 0.5

    def test_compound(self):
        """Compound durations should add up."""
        assert parse_duration("1m30s") == 90
        assert parse_duration("1h1m1s") == 3661

    def test_bare_number(self):
        """Bare numbers should be read as seconds."""
        assert parse_duration("10") == 10
        assert parse_duration("2.5") == 2.5

    def test_case_and_whitespace(self):
        """Units should be case-insensitive and whitespace trimmed."""
        assert parse_duration(" 30S ") == 30

    @pytest.mark.parametrize("value", ["", "abc", "30x", "1h5x", "s30", "1m 30s"])
    def test_invalid(self, value):
        """Malformed durations should fail."""
        with pytest.raises(ValidationError):
            parse_duration(value)

    @pytest.mark.parametrize("value", ["0", "0s", "-5"])
    def test_not_positive(self, value):
        """Zero and negative durations should fail."""
        with pytest.raises(ValidationError):
            parse_duration(value)

    def test_validate_duration_returns_value(self):
        """validate_duration should return the trimmed string."""
        assert validate_duration(" 45s ") == "45s"


class TestValidateUrl:
    """Tests for URL validation."""

    def test_valid_urls(self):
        """HTTP and HTTPS URLs should pass."""
        assert validate_url("https://api.latitude.sh/agent/ping") == "https://api.latitude.sh/agent/ping"
        assert validate_url("http://localhost:8080/ping") == "http://localhost:8080/ping"

    def test_missing_scheme(self):
        """URLs without scheme should fail."""
        with pytest.raises(ValidationError) as exc:
            validate_url("api.latitude.sh/agent/ping")
        assert "scheme" in str(exc.value)

    def test_disallowed_scheme(self):
        """Non-HTTP schemes should fail."""
        with pytest.raises(ValidationError):
            validate_url("ftp://api.latitude.sh/")

    def test_require_https(self):
        """Plain HTTP should fail when HTTPS is required."""
        with pytest.raises(ValidationError) as exc:
            validate_url("http://api.latitude.sh/", require_https=True)
        assert "HTTPS" in str(exc.value)

    def test_missing_host(self):
        """URLs without a host should fail."""
        with pytest.raises(ValidationError):
            validate_url("https://")


class TestValidateIpAddress:
    """Tests for IP address validation."""

    def test_ipv4(self):
        """IPv4 addresses should pass."""
        assert validate_ip_address("203.0.113.10") == "203.0.113.10"

    def test_ipv6(self):
        """IPv6 addresses should pass."""
        assert validate_ip_address("2001:db8::1") == "2001:db8::1"

    @pytest.mark.parametrize("value", ["256.1.1.1", "example.com", "10.0.0.0/8", ""])
    def test_invalid(self, value):
        """Hostnames, networks and malformed addresses should fail."""
        with pytest.raises(ValidationError):
            validate_ip_address(value)


class TestValidatePath:
    """Tests for path validation."""

    def test_absolute_path(self):
        """Absolute paths should pass."""
        assert validate_path("/usr/sbin/ufw") == "/usr/sbin/ufw"

    def test_relative_path(self):
        """Relative paths should fail when absolute is required."""
        with pytest.raises(ValidationError) as exc:
            validate_path("sbin/ufw")
        assert "absolute" in str(exc.value)

    def test_relative_allowed(self):
        """Relative paths should pass when allowed."""
        assert validate_path("sbin/ufw", must_be_absolute=False) == "sbin/ufw"

    @pytest.mark.parametrize("value", ["/etc/../root", "/tmp/a\nb", "/tmp/a\x00"])
    def test_dangerous_patterns(self, value):
        """Traversal and control characters should fail."""
        with pytest.raises(ValidationError):
            validate_path(value)
