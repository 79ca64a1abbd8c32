"""URL validation and canonicalization."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from ..utils.domains import normalize_host


ALLOWED_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": 80, "https": 443}


class ScanError(Exception):
    """Base exception for scan failures."""


class InvalidUrlError(ScanError, ValueError):
    """Input is not a well-formed http(s) URL."""

    def __init__(self, url: object, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL ({reason}): {url!r}")


@dataclass(frozen=True)
class CanonicalUrl:
    """A validated URL split into the parts the analyzers need."""

    scheme: str
    host: str
    port: Optional[int]
    path: str
    query: str = ""

    @property
    def is_https(self) -> bool:
        return self.scheme == "https"

    @property
    def effective_port(self) -> int:
        return self.port or DEFAULT_PORTS[self.scheme]

    @property
    def netloc(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port and self.port != DEFAULT_PORTS[self.scheme]:
            return f"{host}:{self.port}"
        return host

    @property
    def url(self) -> str:
        return urlunsplit((self.scheme, self.netloc, self.path, self.query, ""))

    def __str__(self) -> str:
        return self.url


def validate_url(raw: object) -> CanonicalUrl:
    """Parse and normalize raw input into a CanonicalUrl.

    Raises InvalidUrlError for non-strings, malformed input, hosts that are
    missing or contain whitespace, bad ports, and any scheme other than
    http/https.
    """
    if not isinstance(raw, str):
        raise InvalidUrlError(raw, "not a string")

    candidate = raw.strip()
    if not candidate:
        raise InvalidUrlError(raw, "empty")
    if any(ch.isspace() for ch in candidate):
        raise InvalidUrlError(raw, "contains whitespace")

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as exc:
        raise InvalidUrlError(raw, str(exc)) from exc

    scheme = (parts.scheme or "").lower()
    if not scheme:
        raise InvalidUrlError(raw, "missing scheme")
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidUrlError(raw, f"scheme '{scheme}' not allowed")

    host = normalize_host(parts.hostname or "")
    if not host:
        raise InvalidUrlError(raw, "missing host")
    if ".." in host or host.startswith("-"):
        raise InvalidUrlError(raw, "malformed host")

    if port == 0:
        raise InvalidUrlError(raw, "invalid port")

    return CanonicalUrl(
        scheme=scheme,
        host=host,
        port=port,
        path=parts.path or "/",
        query=parts.query,
    )
