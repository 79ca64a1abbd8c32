"""Scan data models.

Every entity is created fresh for a single scan and never mutated afterwards,
so the dataclasses here are frozen. ``to_dict()`` renders the JSON wire shape
consumed by clients (camelCase field names).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

P = TypeVar("P")


class Reputation(str, Enum):
    """Domain reputation classes."""

    GOOD = "good"
    UNKNOWN = "unknown"
    SUSPICIOUS = "suspicious"


class ScanStatus(str, Enum):
    """Final classification derived from the combined score."""

    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"


class ProviderStatus(str, Enum):
    """Normalized status of a single threat-intelligence provider."""

    NOT_CONFIGURED = "NOT_CONFIGURED"
    OK_CLEAN = "OK_CLEAN"
    OK_FLAGGED = "OK_FLAGGED"
    SUBMITTED = "SUBMITTED"  # Unknown to the provider; submitted for future analysis
    PROCESSING = "PROCESSING"  # Poll budget exhausted before results were ready
    ERROR = "ERROR"

    @property
    def is_usable(self) -> bool:
        """Provider answered (even if the answer is "not ready yet")."""
        return self in (
            ProviderStatus.OK_CLEAN,
            ProviderStatus.OK_FLAGGED,
            ProviderStatus.SUBMITTED,
            ProviderStatus.PROCESSING,
        )


class ProbeState(str, Enum):
    """How an analysis stage ended."""

    NOT_ATTEMPTED = "not_attempted"
    OK = "ok"
    SKIPPED = "skipped"  # Nothing to probe (e.g. plain http for the TLS probe)
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True)
class ScanRequest:
    """Inbound scan request."""

    url: str
    local_score: Optional[float] = None
    local_factors: tuple[str, ...] = ()

    def __post_init__(self):
        if not isinstance(self.url, str):
            raise TypeError("url must be a string")
        if self.local_score is not None:
            if isinstance(self.local_score, bool) or not isinstance(self.local_score, (int, float)):
                raise TypeError("local_score must be a number")
            if not 0 <= self.local_score <= 100:
                raise ValueError("local_score must be between 0 and 100")
        # Accept any iterable of strings, store as an immutable tuple.
        object.__setattr__(
            self,
            "local_factors",
            tuple(str(f) for f in (self.local_factors or ()) if str(f).strip()),
        )

    @classmethod
    def from_dict(cls, data: dict) -> "ScanRequest":
        """Build a request from a JSON payload (camelCase or snake_case keys)."""
        local_score = data.get("localScore", data.get("local_score"))
        local_factors = data.get("localFactors", data.get("local_factors")) or ()
        if isinstance(local_factors, str):
            local_factors = (local_factors,)
        return cls(
            url=data.get("url"),
            local_score=local_score,
            local_factors=tuple(local_factors),
        )


@dataclass(frozen=True)
class DomainProfile:
    """Domain reputation analysis result."""

    name: str
    reputation: Reputation = Reputation.UNKNOWN
    age: Optional[int] = None
    registrar: Optional[str] = None
    country: Optional[str] = None
    resolves: bool = False
    addresses: tuple[str, ...] = ()
    findings: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "name": self.name,
            "reputation": self.reputation.value,
            "resolves": self.resolves,
            "addresses": list(self.addresses),
            "findings": list(self.findings),
        }
        if self.age is not None:
            data["age"] = self.age
        if self.registrar:
            data["registrar"] = self.registrar
        if self.country:
            data["country"] = self.country
        return data


@dataclass(frozen=True)
class CertificateSummary:
    """Observational summary of a peer certificate."""

    subject: str
    issuer: str
    valid_from: datetime
    valid_to: datetime
    serial_number: str = ""
    san_domains: tuple[str, ...] = ()

    def is_current(self, now: datetime) -> bool:
        return self.valid_from <= now <= self.valid_to

    def to_dict(self) -> dict:
        return {
            "subject": self.subject,
            "issuer": self.issuer,
            "validFrom": self.valid_from.isoformat(),
            "validTo": self.valid_to.isoformat(),
            "serialNumber": self.serial_number,
            "sanDomains": list(self.san_domains),
        }


@dataclass(frozen=True)
class SecurityProfile:
    """Transport security probe result."""

    has_https: bool = False
    has_ssl: bool = False
    certificate: Optional[CertificateSummary] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"hasHttps": self.has_https, "hasSsl": self.has_ssl}
        if self.certificate:
            data["certificate"] = self.certificate.to_dict()
        return data


@dataclass(frozen=True)
class ContentProfile:
    """Content heuristics. All fields are None when the page could not be fetched."""

    title: Optional[str] = None
    has_login_form: Optional[bool] = None
    external_links: Optional[int] = None
    suspicious_scripts: Optional[bool] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.title is None
            and self.has_login_form is None
            and self.external_links is None
            and self.suspicious_scripts is None
        )

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        if self.title is not None:
            data["title"] = self.title
        if self.has_login_form is not None:
            data["hasLoginForm"] = self.has_login_form
        if self.external_links is not None:
            data["externalLinks"] = self.external_links
        if self.suspicious_scripts is not None:
            data["suspiciousScripts"] = self.suspicious_scripts
        return data


@dataclass(frozen=True)
class AnalysisOutcome(Generic[P]):
    """A profile plus how the stage that produced it ended."""

    profile: P
    state: ProbeState = ProbeState.OK
    detail: str = ""

    @property
    def degraded(self) -> bool:
        return self.state in (ProbeState.TIMED_OUT, ProbeState.FAILED)


@dataclass(frozen=True)
class ProviderResult:
    """Normalized result from one threat-intelligence provider."""

    provider_name: str
    status: ProviderStatus
    evidence: dict = field(default_factory=dict)
    threat_types: tuple[str, ...] = ()

    @property
    def contributes_to_report_count(self) -> bool:
        return self.status == ProviderStatus.OK_FLAGGED

    def to_dict(self) -> dict:
        return {
            "provider": self.provider_name,
            "status": self.status.value,
            "detected": self.contributes_to_report_count,
            "threatTypes": list(self.threat_types),
            "contributesToReportCount": self.contributes_to_report_count,
            **self.evidence,
        }


@dataclass(frozen=True)
class ThreatSummary:
    """Aggregate of all provider results, in provider order."""

    provider_details: dict[str, ProviderResult] = field(default_factory=dict)

    @property
    def flagged_provider_names(self) -> tuple[str, ...]:
        return tuple(
            name
            for name, result in self.provider_details.items()
            if result.contributes_to_report_count
        )

    @property
    def report_count(self) -> int:
        return len(self.flagged_provider_names)

    @property
    def configured_count(self) -> int:
        return sum(
            1
            for result in self.provider_details.values()
            if result.status != ProviderStatus.NOT_CONFIGURED
        )

    @property
    def usable_count(self) -> int:
        return sum(1 for result in self.provider_details.values() if result.status.is_usable)

    @property
    def partial(self) -> bool:
        """Fewer than half of the configured providers gave a usable answer."""
        configured = self.configured_count
        return configured > 0 and self.usable_count < configured / 2

    @property
    def threat_types(self) -> set[str]:
        types: set[str] = set()
        for result in self.provider_details.values():
            if result.contributes_to_report_count:
                types.update(result.threat_types)
        return types

    def to_dict(self) -> dict:
        return {
            "databases": list(self.flagged_provider_names),
            "reportCount": self.report_count,
            "partial": self.partial,
            "engineDetails": {
                name: result.to_dict() for name, result in self.provider_details.items()
            },
        }


@dataclass(frozen=True)
class Verdict:
    """Boolean threat-category flags."""

    is_safe: bool
    is_phishing: bool
    is_malware: bool
    is_spam: bool
    category: str

    def to_dict(self) -> dict:
        return {
            "isSafe": self.is_safe,
            "isPhishing": self.is_phishing,
            "isMalware": self.is_malware,
            "isSpam": self.is_spam,
            "category": self.category,
        }


@dataclass(frozen=True)
class ScanResult:
    """Final fused result of a scan."""

    url: str
    score: int
    confidence: float
    status: ScanStatus
    verdict: Verdict
    factors: tuple[str, ...]
    recommendation: str
    domain: DomainProfile
    security: SecurityProfile
    content: ContentProfile
    threat: ThreatSummary
    cloud_score: int = 0
    local_score: Optional[float] = None
    breakdown: dict[str, int] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return self.threat.partial

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "status": self.status.value,
            "score": self.score,
            "confidence": self.confidence,
            "partial": self.partial,
            "verdict": self.verdict.to_dict(),
            "analysis": {
                "domain": self.domain.to_dict(),
                "security": self.security.to_dict(),
                "content": self.content.to_dict(),
                "ml": {
                    "localScore": self.local_score,
                    "cloudScore": self.cloud_score,
                    "combinedScore": self.score,
                    "breakdown": dict(self.breakdown),
                },
                "threat": self.threat.to_dict(),
            },
            "factors": list(self.factors),
            "recommendation": self.recommendation,
        }
