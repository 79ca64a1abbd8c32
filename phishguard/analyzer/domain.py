"""Domain reputation analysis.

Resolves the host (A, then AAAA) and applies ordered heuristic rules:
suspicious TLD, IP-literal host, excessive subdomain depth, and sensitive
keywords in the hostname. Keyword matching skips an allow-list of known
legitimate domains so brand subdomains are not flagged.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Awaitable, Callable, Iterable, Optional

from ..utils.domains import is_ip_literal, label_count, matches_domain_list, public_suffix
from .models import AnalysisOutcome, DomainProfile, ProbeState, Reputation
from .validator import CanonicalUrl

logger = logging.getLogger(__name__)

# (host, family) -> list of addresses; raises OSError when the name does not resolve.
Resolver = Callable[[str, int], Awaitable[list[str]]]


async def resolve_with_getaddrinfo(host: str, family: int) -> list[str]:
    """Resolve a hostname for one address family via the event loop resolver."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, family=family, type=socket.SOCK_STREAM)
    return sorted({sockaddr[0] for *_rest, sockaddr in infos})


class DomainReputationAnalyzer:
    """Scores a URL's host against reputation heuristics."""

    def __init__(
        self,
        *,
        suspicious_tlds: Iterable[str],
        sensitive_keywords: Iterable[str],
        legitimate_domains: Iterable[str],
        max_subdomain_labels: int = 4,
        dns_timeout: float = 5.0,
        resolver: Optional[Resolver] = None,
    ):
        self.suspicious_tlds = {t.lower().lstrip(".") for t in suspicious_tlds}
        self.sensitive_keywords = [k.lower() for k in sensitive_keywords]
        self.legitimate_domains = {d.lower() for d in legitimate_domains}
        self.max_subdomain_labels = max_subdomain_labels
        self.dns_timeout = dns_timeout
        self.resolver = resolver or resolve_with_getaddrinfo

    async def analyze(self, url: CanonicalUrl) -> AnalysisOutcome[DomainProfile]:
        host = url.host
        addresses, dns_state, dns_detail = await self._resolve(host)
        resolves = bool(addresses)

        findings: list[str] = []
        if not resolves:
            findings.append("Domain does not resolve")

        rule_hits = self.evaluate_rules(host)
        findings.extend(rule_hits)

        if rule_hits:
            reputation = Reputation.SUSPICIOUS
        elif resolves:
            reputation = Reputation.GOOD
        else:
            reputation = Reputation.UNKNOWN

        profile = DomainProfile(
            name=host,
            reputation=reputation,
            resolves=resolves,
            addresses=tuple(addresses),
            findings=tuple(findings),
        )
        logger.debug(f"Domain {host}: {reputation.value} ({'; '.join(findings) or 'no findings'})")
        return AnalysisOutcome(profile=profile, state=dns_state, detail=dns_detail)

    def evaluate_rules(self, host: str) -> list[str]:
        """Apply heuristic rules in order, returning the findings that fired."""
        hits: list[str] = []

        suffix = public_suffix(host)
        tld = suffix.rsplit(".", 1)[-1] if suffix else ""
        if tld and tld in self.suspicious_tlds:
            hits.append(f"Suspicious TLD: .{tld}")

        ip_literal = is_ip_literal(host)
        if ip_literal:
            hits.append("URL uses IP address instead of domain")

        if not ip_literal and label_count(host) > self.max_subdomain_labels:
            hits.append("Excessive subdomain levels")

        if not ip_literal and not matches_domain_list(host, self.legitimate_domains):
            for keyword in self.sensitive_keywords:
                if keyword in host:
                    hits.append(f"Domain contains suspicious keyword: {keyword}")
                    break

        return hits

    async def _resolve(self, host: str) -> tuple[list[str], ProbeState, str]:
        """Resolve A then AAAA records; failures are recorded, never raised."""
        if is_ip_literal(host):
            return [host], ProbeState.NOT_ATTEMPTED, "IP literal"

        timed_out = False
        last_error = ""
        for family in (socket.AF_INET, socket.AF_INET6):
            try:
                addresses = await asyncio.wait_for(self.resolver(host, family), timeout=self.dns_timeout)
            except asyncio.TimeoutError:
                timed_out = True
                last_error = f"DNS lookup timed out after {self.dns_timeout}s"
                logger.debug(f"{last_error} for {host}")
                continue
            except (OSError, UnicodeError) as e:
                # idna rejects over-long or empty labels before any lookup happens
                last_error = str(e) or e.__class__.__name__
                logger.debug(f"DNS lookup failed for {host} (family {family}): {last_error}")
                continue
            if addresses:
                return list(addresses), ProbeState.OK, ""

        state = ProbeState.TIMED_OUT if timed_out else ProbeState.FAILED
        return [], state, last_error or "no addresses"
