"""Tests for URL validation and canonicalization."""

import pytest

from phishguard.analyzer.validator import InvalidUrlError, ScanError, validate_url


def test_accepts_http_and_https():
    http = validate_url("http://example.com/login")
    https = validate_url("HTTPS://Example.COM")

    assert http.scheme == "http"
    assert http.host == "example.com"
    assert http.path == "/login"
    assert not http.is_https

    assert https.scheme == "https"
    assert https.host == "example.com"
    assert https.path == "/"
    assert https.is_https
    assert https.url == "https://example.com/"


def test_keeps_non_default_port_and_query():
    url = validate_url("https://example.com:8443/a?b=c")
    assert url.port == 8443
    assert url.effective_port == 8443
    assert url.url == "https://example.com:8443/a?b=c"


def test_default_port_is_dropped_from_canonical_form():
    url = validate_url("http://example.com:80/")
    assert url.effective_port == 80
    assert url.url == "http://example.com/"


def test_ip_literal_hosts():
    v4 = validate_url("http://203.0.113.5/login")
    v6 = validate_url("http://[2001:db8::1]/")
    assert v4.host == "203.0.113.5"
    assert v6.host == "2001:db8::1"
    assert v6.netloc == "[2001:db8::1]"


@pytest.mark.parametrize(
    "raw",
    [
        "not a url",
        "",
        "   ",
        "example.com",
        "ftp://example.com/file",
        "javascript:alert(1)",
        "file:///etc/passwd",
        "http://",
        "http://exa mple.com",
        "http://example..com",
        "http://example.com:99999/",
        "http://example.com:0/",
    ],
)
def test_rejects_malformed_or_disallowed(raw):
    with pytest.raises(InvalidUrlError):
        validate_url(raw)


def test_rejects_non_string():
    with pytest.raises(InvalidUrlError) as excinfo:
        validate_url(None)
    assert excinfo.value.reason == "not a string"


def test_invalid_url_error_hierarchy():
    with pytest.raises(ScanError):
        validate_url("ftp://example.com")
    with pytest.raises(ValueError):
        validate_url("not a url")
