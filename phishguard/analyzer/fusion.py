"""Score fusion and verdict classification.

Combines the domain, security, content and threat-intelligence analyses plus
an optional client-supplied local score into one result. The point values and
weights live in DEFAULT_SCORING and can be overridden via the ``scoring``
block of heuristics.yaml.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from .models import (
    ContentProfile,
    DomainProfile,
    Reputation,
    ScanRequest,
    ScanResult,
    ScanStatus,
    SecurityProfile,
    ThreatSummary,
    Verdict,
)

logger = logging.getLogger(__name__)

DEFAULT_SCORING: dict[str, Any] = {
    "domain_suspicious": 30,
    "domain_unknown": 15,
    "no_https": 15,
    "no_valid_certificate": 5,
    "login_form": 10,
    "suspicious_scripts": 10,
    "threat_per_report": 10,
    "threat_cap": 30,
    "local_weight": 0.4,
    "cloud_weight": 0.6,
    "danger_threshold": 70,
    "warning_threshold": 40,
    "confidence_base": 0.5,
    "confidence_reports": 0.3,
    "confidence_ssl": 0.1,
    "confidence_factors": 0.15,
    "confidence_factor_count": 3,
    "confidence_cap": 0.95,
}

RECOMMENDATIONS = {
    ScanStatus.DANGER: (
        "⚠️ DANGER: This URL is highly suspicious and likely malicious. "
        "Do not visit this site or enter any personal information."
    ),
    ScanStatus.WARNING: (
        "⚠️ WARNING: This URL shows suspicious characteristics. "
        "Exercise caution and verify the authenticity before proceeding."
    ),
    ScanStatus.SAFE: (
        "✅ SAFE: This URL appears to be safe based on our analysis. "
        "However, always exercise caution online."
    ),
}

CATEGORIES = {
    ScanStatus.DANGER: "malicious",
    ScanStatus.WARNING: "suspicious",
    ScanStatus.SAFE: "legitimate",
}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round .5 upwards (Python's round() rounds half to even)."""
    return int(math.floor(value + 0.5))


class ScoringPolicy:
    """Deterministic, additive scoring policy."""

    def __init__(self, weights: Optional[dict[str, Any]] = None):
        self.weights = {**DEFAULT_SCORING, **(weights or {})}

    def _w(self, key: str) -> Any:
        return self.weights[key]

    def status_for(self, score: int) -> ScanStatus:
        if score >= self._w("danger_threshold"):
            return ScanStatus.DANGER
        if score >= self._w("warning_threshold"):
            return ScanStatus.WARNING
        return ScanStatus.SAFE

    def combined_score(self, local_score: Optional[float], cloud_score: int) -> int:
        if local_score is None:
            return cloud_score
        combined = local_score * self._w("local_weight") + cloud_score * self._w("cloud_weight")
        return int(_clamp(round_half_up(combined), 0, 100))

    def breakdown(
        self,
        domain: DomainProfile,
        security: SecurityProfile,
        content: ContentProfile,
        threat: ThreatSummary,
    ) -> dict[str, int]:
        """Per-category point contributions to the cloud score."""
        domain_points = 0
        if domain.reputation == Reputation.SUSPICIOUS:
            domain_points = self._w("domain_suspicious")
        elif domain.reputation == Reputation.UNKNOWN:
            domain_points = self._w("domain_unknown")

        security_points = 0
        if not security.has_https:
            security_points += self._w("no_https")
        elif not security.has_ssl:
            security_points += self._w("no_valid_certificate")

        content_points = 0
        if content.has_login_form:
            content_points += self._w("login_form")
        if content.suspicious_scripts:
            content_points += self._w("suspicious_scripts")

        threat_points = min(
            self._w("threat_cap"),
            threat.report_count * self._w("threat_per_report"),
        )

        return {
            "domain": int(domain_points),
            "security": int(security_points),
            "content": int(content_points),
            "threat": int(threat_points),
        }

    def cloud_score(self, breakdown: dict[str, int]) -> int:
        return int(_clamp(sum(breakdown.values()), 0, 100))

    def engine_factors(
        self,
        domain: DomainProfile,
        security: SecurityProfile,
        content: ContentProfile,
        threat: ThreatSummary,
    ) -> list[str]:
        """Engine-derived factors, in fixed order."""
        factors: list[str] = []
        if domain.reputation == Reputation.SUSPICIOUS:
            factors.append("Suspicious domain reputation")
        if not security.has_https:
            factors.append("No HTTPS encryption")
        elif not security.has_ssl:
            factors.append("Invalid or missing SSL certificate")
        if content.has_login_form:
            factors.append("Contains login form")
        if content.suspicious_scripts:
            factors.append("Suspicious JavaScript detected")
        if names := threat.flagged_provider_names:
            factors.append(f"Reported in threat databases: {', '.join(names)}")
        return factors

    def confidence(self, report_count: int, has_ssl: bool, factor_count: int) -> float:
        value = self._w("confidence_base")
        if report_count > 0:
            value += self._w("confidence_reports")
        if has_ssl:
            value += self._w("confidence_ssl")
        if factor_count > self._w("confidence_factor_count"):
            value += self._w("confidence_factors")
        value = min(self._w("confidence_cap"), value)
        return round(_clamp(value, 0.0, 1.0), 2)

    def verdict(self, status: ScanStatus, factors: list[str], threat: ThreatSummary) -> Verdict:
        threat_types = threat.threat_types
        mentions_phishing = any("phish" in f.lower() for f in factors)
        return Verdict(
            is_safe=status == ScanStatus.SAFE,
            is_phishing=status == ScanStatus.DANGER and (mentions_phishing or "phishing" in threat_types),
            is_malware="malware" in threat_types,
            is_spam=False,
            category=CATEGORIES[status],
        )

    def fuse(
        self,
        request: ScanRequest,
        url: str,
        domain: DomainProfile,
        security: SecurityProfile,
        content: ContentProfile,
        threat: ThreatSummary,
    ) -> ScanResult:
        """Fuse all analyses into one ScanResult."""
        breakdown = self.breakdown(domain, security, content, threat)
        cloud = self.cloud_score(breakdown)
        score = self.combined_score(request.local_score, cloud)
        status = self.status_for(score)

        factors = list(request.local_factors)
        factors.extend(self.engine_factors(domain, security, content, threat))
        if status != ScanStatus.SAFE and not factors:
            # Only reachable when a high local score carries no local factors.
            factors.append(f"Local risk score: {round_half_up(request.local_score or 0)}")

        confidence = self.confidence(threat.report_count, security.has_ssl, len(factors))

        logger.debug(
            f"Fused {url}: cloud={cloud} local={request.local_score} "
            f"combined={score} status={status.value}"
        )

        return ScanResult(
            url=url,
            score=score,
            confidence=confidence,
            status=status,
            verdict=self.verdict(status, factors, threat),
            factors=tuple(factors),
            recommendation=RECOMMENDATIONS[status],
            domain=domain,
            security=security,
            content=content,
            threat=threat,
            cloud_score=cloud,
            local_score=request.local_score,
            breakdown=breakdown,
        )
