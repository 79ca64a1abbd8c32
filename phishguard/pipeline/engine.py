"""Scan engine for PhishGuard."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from ..analyzer.content import ContentHeuristicFetcher
from ..analyzer.domain import DomainReputationAnalyzer
from ..analyzer.fusion import ScoringPolicy
from ..analyzer.models import (
    AnalysisOutcome,
    ContentProfile,
    DomainProfile,
    ProbeState,
    ScanRequest,
    ScanResult,
    SecurityProfile,
    ThreatSummary,
)
from ..analyzer.security import TransportSecurityProber
from ..analyzer.validator import CanonicalUrl, ScanError, validate_url
from ..config import Config
from ..intel.aggregator import ThreatIntelAggregator

logger = logging.getLogger(__name__)

# Extra time a stage gets on top of its own internal deadlines.
STAGE_GRACE = 1.0

ScanInput = Union[ScanRequest, str]


@dataclass(frozen=True)
class ScanAnalyses:
    """The four independent analyses of one URL."""

    url: CanonicalUrl
    domain: AnalysisOutcome[DomainProfile]
    security: AnalysisOutcome[SecurityProfile]
    content: AnalysisOutcome[ContentProfile]
    threat: ThreatSummary

    def stage_states(self) -> dict[str, str]:
        return {
            "domain": self.domain.state.value,
            "security": self.security.state.value,
            "content": self.content.state.value,
        }


class ScanEngine:
    """Validates a URL, runs every analysis concurrently and fuses the results."""

    def __init__(
        self,
        *,
        domain_analyzer: DomainReputationAnalyzer,
        security_prober: TransportSecurityProber,
        content_fetcher: ContentHeuristicFetcher,
        aggregator: ThreatIntelAggregator,
        policy: Optional[ScoringPolicy] = None,
        max_batch_size: int = 50,
        max_concurrent_scans: int = 5,
    ):
        self.domain_analyzer = domain_analyzer
        self.security_prober = security_prober
        self.content_fetcher = content_fetcher
        self.aggregator = aggregator
        self.policy = policy or ScoringPolicy()
        self.max_batch_size = max_batch_size
        self.max_concurrent_scans = max_concurrent_scans

    @classmethod
    def from_config(cls, config: Config, **overrides: Any) -> "ScanEngine":
        """Wire the standard components from configuration.

        Keyword overrides replace individual components (used by tests).
        """
        components: dict[str, Any] = {
            "domain_analyzer": DomainReputationAnalyzer(
                suspicious_tlds=config.suspicious_tlds,
                sensitive_keywords=config.sensitive_keywords,
                legitimate_domains=config.legitimate_domains,
                max_subdomain_labels=config.max_subdomain_labels,
                dns_timeout=config.dns_timeout,
            ),
            "security_prober": TransportSecurityProber(timeout=config.tls_timeout),
            "content_fetcher": ContentHeuristicFetcher(
                obfuscation_patterns=config.obfuscation_patterns,
                timeout=config.content_timeout,
                max_chunks=config.content_max_chunks,
            ),
            "policy": ScoringPolicy(config.scoring_weights),
            "max_batch_size": config.max_batch_size,
            "max_concurrent_scans": config.max_concurrent_scans,
        }
        components.update(overrides)
        if "aggregator" not in components:
            components["aggregator"] = ThreatIntelAggregator.from_config(config)
        return cls(**components)

    def _deadlines(self) -> dict[str, float]:
        # DNS tries A then AAAA, each under its own timeout.
        return {
            "domain": 2 * self.domain_analyzer.dns_timeout + STAGE_GRACE,
            "security": self.security_prober.timeout + STAGE_GRACE,
            "content": self.content_fetcher.timeout + STAGE_GRACE,
            "threat": self.aggregator.deadline + STAGE_GRACE,
        }

    async def analyze(self, url: CanonicalUrl) -> ScanAnalyses:
        """Run the four analyses concurrently; each degrades instead of raising."""
        deadlines = self._deadlines()

        domain_result, security_result, content_result, threat_result = await asyncio.gather(
            asyncio.wait_for(self.domain_analyzer.analyze(url), timeout=deadlines["domain"]),
            asyncio.wait_for(self.security_prober.analyze(url), timeout=deadlines["security"]),
            asyncio.wait_for(self.content_fetcher.analyze(url), timeout=deadlines["content"]),
            asyncio.wait_for(self.aggregator.check(url.url), timeout=deadlines["threat"]),
            return_exceptions=True,
        )

        if isinstance(domain_result, BaseException):
            domain_result = self._degraded("Domain analysis", url, domain_result, DomainProfile(name=url.host))
        if isinstance(security_result, BaseException):
            security_result = self._degraded(
                "Security probe",
                url,
                security_result,
                SecurityProfile(has_https=url.is_https, has_ssl=False),
            )
        if isinstance(content_result, BaseException):
            content_result = self._degraded("Content fetch", url, content_result, ContentProfile())
        if isinstance(threat_result, BaseException):
            threat_result = self._threat_outage(url, threat_result)

        return ScanAnalyses(
            url=url,
            domain=domain_result,
            security=security_result,
            content=content_result,
            threat=threat_result,
        )

    @staticmethod
    def _degraded(stage: str, url: CanonicalUrl, error: BaseException, profile):
        if isinstance(error, asyncio.TimeoutError):
            logger.debug(f"{stage} exceeded its deadline for {url}")
            return AnalysisOutcome(profile=profile, state=ProbeState.TIMED_OUT, detail="stage deadline exceeded")
        if isinstance(error, asyncio.CancelledError):
            raise error
        logger.exception(f"{stage} failed unexpectedly for {url}", exc_info=error)
        return AnalysisOutcome(profile=profile, state=ProbeState.FAILED, detail=str(error) or error.__class__.__name__)

    def _threat_outage(self, url: CanonicalUrl, error: BaseException) -> ThreatSummary:
        """Every provider reports ERROR (or NOT_CONFIGURED) when the whole stage fails."""
        if isinstance(error, asyncio.CancelledError):
            raise error
        if isinstance(error, asyncio.TimeoutError):
            logger.debug(f"Threat intelligence exceeded its deadline for {url}")
            message, error_type = "Aggregator deadline exceeded", "Timeout"
        else:
            logger.exception(f"Threat intelligence failed unexpectedly for {url}", exc_info=error)
            message, error_type = str(error) or error.__class__.__name__, "Unexpected"

        details = {}
        for provider in self.aggregator.providers:
            if provider.is_configured():
                details[provider.display_name] = provider.error(message, error_type)
            else:
                details[provider.display_name] = provider.not_configured()
        return ThreatSummary(provider_details=details)

    async def scan(self, request: ScanInput) -> ScanResult:
        """
        Scan one URL.

        Raises InvalidUrlError for malformed input; every other failure is
        folded into the returned ScanResult.
        """
        if isinstance(request, str):
            request = ScanRequest(url=request)

        url = validate_url(request.url)
        logger.info(f"Scanning: {url}")

        analyses = await self.analyze(url)
        result = self.policy.fuse(
            request,
            url.url,
            analyses.domain.profile,
            analyses.security.profile,
            analyses.content.profile,
            analyses.threat,
        )

        logger.info(
            f"Completed: {url} (status={result.status.value}, score={result.score}, "
            f"reports={result.threat.report_count})"
        )
        logger.debug(f"Stage states for {url}: {analyses.stage_states()}")
        return result

    async def scan_many(self, requests: Iterable[ScanInput]) -> list[Union[ScanResult, ScanError]]:
        """
        Scan a batch with bounded concurrency.

        Results come back in input order. A per-item InvalidUrlError is
        returned in place of that item's result instead of failing the batch.
        """
        items = list(requests)
        if len(items) > self.max_batch_size:
            raise ValueError(f"Batch of {len(items)} exceeds the limit of {self.max_batch_size}")

        semaphore = asyncio.Semaphore(self.max_concurrent_scans)

        async def _one(item: ScanInput) -> Union[ScanResult, ScanError]:
            async with semaphore:
                try:
                    return await self.scan(item)
                except ScanError as e:
                    logger.info(f"Batch item rejected: {e}")
                    return e

        return list(await asyncio.gather(*(_one(item) for item in items)))

    def capabilities(self) -> dict[str, bool]:
        return self.aggregator.capabilities()

    async def aclose(self) -> None:
        await self.aggregator.aclose()
