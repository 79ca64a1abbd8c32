"""Threat intelligence providers for PhishGuard."""

from .aggregator import ThreatIntelAggregator
from .base import APIError, BaseHTTPProvider, BaseProvider, ProviderError, RateLimitError
from .phishtank import PhishTankProvider
from .polling import PollPolicy, poll_until
from .safebrowsing import SafeBrowsingProvider
from .urlscan import UrlscanProvider
from .virustotal import VirusTotalProvider

__all__ = [
    "ThreatIntelAggregator",
    "APIError",
    "BaseHTTPProvider",
    "BaseProvider",
    "ProviderError",
    "RateLimitError",
    "PhishTankProvider",
    "PollPolicy",
    "poll_until",
    "SafeBrowsingProvider",
    "UrlscanProvider",
    "VirusTotalProvider",
]
