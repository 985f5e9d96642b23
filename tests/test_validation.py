"""URL, short-code and expiry validation tests."""

import pytest

from shortener.exceptions import InvalidCodeError, InvalidUrlError, ReservedCodeError, ValidationError
from shortener.validation import (
    MAX_URL_LENGTH,
    validate_custom_code,
    validate_expires_in,
    validate_owner,
    validate_url,
)


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com",
        "http://example.com/path?query=1",
        "https://sub.domain.example.org/a/b#frag",
    ],
)
def test_validate_url_accepts_valid_urls(url):
    assert validate_url(url) == url


@pytest.mark.parametrize(
    "url",
    [
        "ftp://example.com/file",
        "example.com/long-enough",
        "http://a",
        "https:///nohost/path",
        "https://" + "a" * MAX_URL_LENGTH + ".com",
        "https://not a url.com",
    ],
)
def test_validate_url_rejects_invalid_urls(url):
    with pytest.raises(InvalidUrlError):
        validate_url(url)


def test_validation_errors_are_value_errors():
    with pytest.raises(ValueError):
        validate_url("nope")


@pytest.mark.parametrize(
    "url",
    [
        "http://localhost:8080/admin",
        "http://127.0.0.1/secret",
        "http://10.0.0.5/internal",
        "http://192.168.1.1/router",
        "http://169.254.169.254/latest/meta-data",
    ],
)
def test_private_hosts_rejected_when_restricted(url):
    with pytest.raises(InvalidUrlError):
        validate_url(url, restrict_private_hosts=True)


def test_private_hosts_allowed_when_unrestricted():
    assert validate_url("http://10.0.0.5/internal") == "http://10.0.0.5/internal"


@pytest.mark.parametrize("code", ["abc", "my-link", "My_Link_2024", "a" * 20])
def test_validate_custom_code_accepts_valid_codes(code):
    assert validate_custom_code(code) == code


@pytest.mark.parametrize("code", ["ab", "a" * 21, "has space", "emoji✓", "slash/code", ""])
def test_validate_custom_code_rejects_bad_shape(code):
    with pytest.raises(InvalidCodeError):
        validate_custom_code(code)


@pytest.mark.parametrize("code", ["api", "ADMIN", "Health", "metrics", "docs"])
def test_reserved_words_rejected_case_insensitively(code):
    with pytest.raises(ReservedCodeError):
        validate_custom_code(code)


def test_validate_expires_in_bounds():
    assert validate_expires_in(None) is None
    assert validate_expires_in(3600) == 3600
    assert validate_expires_in(31536000) == 31536000
    with pytest.raises(ValidationError):
        validate_expires_in(3599)
    with pytest.raises(ValidationError):
        validate_expires_in(31536001)


def test_validate_owner_length():
    assert validate_owner("user-1") == "user-1"
    with pytest.raises(ValidationError):
        validate_owner("x" * 101)
