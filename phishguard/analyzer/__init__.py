"""Analyzer modules for PhishGuard."""

from .content import ContentHeuristicFetcher
from .domain import DomainReputationAnalyzer
from .fusion import DEFAULT_SCORING, ScoringPolicy
from .models import ScanRequest, ScanResult, ScanStatus
from .security import TransportSecurityProber
from .validator import InvalidUrlError, ScanError, validate_url

__all__ = [
    "ContentHeuristicFetcher",
    "DomainReputationAnalyzer",
    "DEFAULT_SCORING",
    "ScoringPolicy",
    "ScanRequest",
    "ScanResult",
    "ScanStatus",
    "TransportSecurityProber",
    "InvalidUrlError",
    "ScanError",
    "validate_url",
]
