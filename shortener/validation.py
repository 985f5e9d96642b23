"""Input validation shared by the pydantic schemas and the link registry.

Every check raises a ``shortener.exceptions.ValidationError`` subclass. The
schemas call the same functions from their field validators, so the HTTP
boundary and direct service callers enforce identical rules.
"""

import ipaddress
import re
from urllib.parse import urlsplit

import validators

from shortener.exceptions import InvalidCodeError, InvalidUrlError, ReservedCodeError, ValidationError

__all__ = [
    "MIN_URL_LENGTH",
    "MAX_URL_LENGTH",
    "MIN_EXPIRES_IN",
    "MAX_EXPIRES_IN",
    "RESERVED_WORDS",
    "SHORT_CODE_PATTERN",
    "validate_url",
    "validate_custom_code",
    "validate_expires_in",
    "validate_owner",
]

MIN_URL_LENGTH = 10
MAX_URL_LENGTH = 2048
MIN_EXPIRES_IN = 3600  # 1 hour
MAX_EXPIRES_IN = 31536000  # 1 year
MAX_OWNER_LENGTH = 100

SHORT_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,20}$")

# Route prefixes and words that would be confusing as public short links.
RESERVED_WORDS = frozenset(
    {
        "api", "www", "admin", "root", "help", "support", "contact",
        "about", "terms", "privacy", "login", "signup", "auth",
        "health", "status", "metrics", "analytics", "dashboard",
        "docs", "documentation", "blog", "news", "static", "assets",
        "public", "private", "test", "staging", "dev", "prod",
        "null", "undefined", "true", "false", "delete", "remove",
        "redoc", "openapi",
    }
)


def _is_private_host(hostname: str) -> bool:
    if hostname == "localhost" or hostname.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local or address.is_unspecified


def validate_url(url: str, restrict_private_hosts: bool = False) -> str:
    if not isinstance(url, str):
        raise InvalidUrlError("URL must be a string")
    if len(url) < MIN_URL_LENGTH:
        raise InvalidUrlError(f"URL must be at least {MIN_URL_LENGTH} characters")
    if len(url) > MAX_URL_LENGTH:
        raise InvalidUrlError(f"URL must be less than {MAX_URL_LENGTH} characters")
    if not url.startswith(("http://", "https://")):
        raise InvalidUrlError("URL must start with http:// or https://")

    hostname = (urlsplit(url).hostname or "").lower()
    if not hostname:
        raise InvalidUrlError("Invalid URL format")
    if restrict_private_hosts and _is_private_host(hostname):
        raise InvalidUrlError("Localhost and private network addresses are not allowed")
    if not validators.url(url):
        raise InvalidUrlError("Invalid URL format")
    return url


def validate_custom_code(code: str) -> str:
    if not isinstance(code, str) or not SHORT_CODE_PATTERN.match(code):
        raise InvalidCodeError(
            "Short code must be 3-20 characters, alphanumeric, hyphens, or underscores only"
        )
    if code.lower() in RESERVED_WORDS:
        raise ReservedCodeError(code)
    return code


def validate_expires_in(expires_in: int | None) -> int | None:
    if expires_in is None:
        return None
    if isinstance(expires_in, bool) or not isinstance(expires_in, int):
        raise ValidationError("expires_in must be an integer number of seconds")
    if expires_in < MIN_EXPIRES_IN:
        raise ValidationError("Minimum expiration is 1 hour (3600 seconds)")
    if expires_in > MAX_EXPIRES_IN:
        raise ValidationError("Maximum expiration is 1 year (31536000 seconds)")
    return expires_in


def validate_owner(owner: str | None) -> str | None:
    if owner is None:
        return None
    if not owner or len(owner) > MAX_OWNER_LENGTH:
        raise ValidationError(f"Owner must be 1-{MAX_OWNER_LENGTH} characters")
    return owner
