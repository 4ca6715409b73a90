"""Reusable Pydantic validators for provisioning input.

- Email validation
- Domain name validation
- Installer endpoint URL validation
"""

import re

# Regex patterns
EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
DOMAIN_REGEX = re.compile(
    r"^(?=.{1,253}$)"
    r"(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+"
    r"[a-z]{2,63}$"
)
URL_REGEX = re.compile(
    r"^https?://"  # http:// or https://
    r"(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,63}\.?|"  # domain
    r"localhost|"  # localhost
    r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})"  # IP
    r"(?::\d+)?"  # optional port
    r"(?:/?|[/?]\S+)$",
    re.IGNORECASE,
)


def validate_email(value: str) -> str:
    """Validate email address.

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email is invalid
    """
    if not value:
        raise ValueError("Email is required")

    value = value.strip().lower()

    if len(value) > 254:  # RFC 5321
        raise ValueError("Email address too long")

    if not EMAIL_REGEX.match(value):
        raise ValueError("Invalid email address format")

    return value


def validate_optional_email(value: str | None) -> str | None:
    """Email check that lets empty values through (wizard drafts)."""
    if value is None or not value.strip():
        return value
    return validate_email(value)


def validate_domain(value: str) -> str:
    """Validate and normalise a domain name (``shop.example.com``).

    Raises:
        ValueError: If the domain is malformed
    """
    if not value:
        raise ValueError("Domain is required")

    value = value.strip().lower().rstrip(".")

    if not DOMAIN_REGEX.match(value):
        raise ValueError("Invalid domain format")

    return value


def validate_url(value: str) -> str:
    """Validate an http(s) URL.

    Raises:
        ValueError: If URL is invalid
    """
    if not value:
        raise ValueError("URL is required")

    value = value.strip()

    if not value.startswith(("http://", "https://")):
        raise ValueError("API endpoint must start with http:// or https://")

    if not URL_REGEX.match(value):
        raise ValueError("Invalid URL format")

    return value
