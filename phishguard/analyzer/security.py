"""Transport security probe.

Observational only: the TLS handshake does not verify the chain or hostname,
so certificates of self-signed or mismatched phishing hosts can still be
summarized.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import ssl
from datetime import datetime, timezone
from typing import Callable, Optional

from cryptography import x509

from ..utils.domains import is_ip_literal
from .models import AnalysisOutcome, CertificateSummary, ProbeState, SecurityProfile
from .validator import CanonicalUrl

logger = logging.getLogger(__name__)

# (host, port, timeout) -> DER-encoded peer certificate, or None
CertificateFetcher = Callable[[str, int, float], Optional[bytes]]


def fetch_peer_certificate(host: str, port: int, timeout: float) -> Optional[bytes]:
    """Open a TLS connection and return the peer certificate (blocking)."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    server_hostname = None if is_ip_literal(host) else host
    with socket.create_connection((host, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=server_hostname) as ssock:
            return ssock.getpeercert(binary_form=True)


def summarize_certificate(der: bytes) -> CertificateSummary:
    """Parse a DER certificate into a CertificateSummary."""
    cert = x509.load_der_x509_certificate(der)

    san_domains: list[str] = []
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        san_domains = san.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        pass

    return CertificateSummary(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        valid_from=cert.not_valid_before_utc,
        valid_to=cert.not_valid_after_utc,
        serial_number=format(cert.serial_number, "x"),
        san_domains=tuple(san_domains),
    )


class TransportSecurityProber:
    """Determines HTTPS usage and summarizes the TLS certificate."""

    def __init__(
        self,
        timeout: float = 5.0,
        fetcher: Optional[CertificateFetcher] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.timeout = timeout
        self.fetcher = fetcher or fetch_peer_certificate
        self.clock = clock

    async def analyze(self, url: CanonicalUrl) -> AnalysisOutcome[SecurityProfile]:
        if not url.is_https:
            return AnalysisOutcome(
                profile=SecurityProfile(has_https=False, has_ssl=False),
                state=ProbeState.SKIPPED,
                detail="plain http",
            )

        host, port = url.host, url.effective_port
        try:
            der = await asyncio.wait_for(
                asyncio.to_thread(self.fetcher, host, port, self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.debug(f"TLS probe timed out for {host}:{port}")
            return AnalysisOutcome(
                profile=SecurityProfile(has_https=True, has_ssl=False),
                state=ProbeState.TIMED_OUT,
                detail=f"TLS handshake timed out after {self.timeout}s",
            )
        except (OSError, ssl.SSLError, UnicodeError) as e:
            logger.debug(f"TLS probe failed for {host}:{port}: {e}")
            return AnalysisOutcome(
                profile=SecurityProfile(has_https=True, has_ssl=False),
                state=ProbeState.FAILED,
                detail=str(e) or e.__class__.__name__,
            )

        if not der:
            return AnalysisOutcome(
                profile=SecurityProfile(has_https=True, has_ssl=False),
                state=ProbeState.FAILED,
                detail="no peer certificate",
            )

        try:
            certificate = summarize_certificate(der)
        except ValueError as e:
            logger.debug(f"Unparseable certificate from {host}: {e}")
            return AnalysisOutcome(
                profile=SecurityProfile(has_https=True, has_ssl=False),
                state=ProbeState.FAILED,
                detail=f"certificate parse error: {e}",
            )

        # Expired or not-yet-valid certificates are reported but do not count as SSL.
        current = certificate.is_current(self.clock())
        return AnalysisOutcome(
            profile=SecurityProfile(has_https=True, has_ssl=current, certificate=certificate),
            state=ProbeState.OK,
            detail="" if current else "certificate outside its validity window",
        )
