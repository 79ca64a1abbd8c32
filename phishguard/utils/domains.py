"""Domain normalization utilities."""

from __future__ import annotations

import ipaddress
from typing import Iterable

import tldextract

# Offline extractor: only the bundled public suffix snapshot is used, so scans
# never trigger a suffix-list download.
_extract = tldextract.TLDExtract(suffix_list_urls=())


def normalize_host(value: str) -> str:
    """Lowercase a hostname and strip surrounding whitespace, dots and brackets."""
    host = (value or "").strip().lower().strip(".")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host


def is_ip_literal(host: str) -> bool:
    """Return True when the host is an IPv4 or IPv6 address literal."""
    try:
        ipaddress.ip_address(normalize_host(host))
    except ValueError:
        return False
    return True


def public_suffix(host: str) -> str:
    """Return the public suffix (TLD) of a host, empty for IP literals."""
    host = normalize_host(host)
    if not host or is_ip_literal(host):
        return ""
    extracted = _extract(host)
    if extracted.suffix:
        return extracted.suffix
    return host.rsplit(".", 1)[-1] if "." in host else ""


def label_count(host: str) -> int:
    """Number of dot-separated labels in a hostname."""
    host = normalize_host(host)
    if not host:
        return 0
    return len(host.split("."))


def matches_domain_list(host: str, domains: Iterable[str]) -> bool:
    """Check whether host equals, or is a subdomain of, any listed domain."""
    host = normalize_host(host)
    if not host:
        return False
    for entry in domains:
        candidate = normalize_host(entry)
        if not candidate:
            continue
        if host == candidate or host.endswith(f".{candidate}"):
            return True
    return False
