"""Threat intelligence aggregation across multiple providers."""

import asyncio
import logging
from typing import Iterable, Optional

import httpx

from ..analyzer.models import ProviderResult, ProviderStatus, ThreatSummary
from ..config import Config
from .base import BaseProvider
from .phishtank import PhishTankProvider
from .polling import PollPolicy, Sleep
from .safebrowsing import SafeBrowsingProvider
from .urlscan import UrlscanProvider
from .virustotal import VirusTotalProvider

logger = logging.getLogger(__name__)


class ThreatIntelAggregator:
    """
    Fans a URL out to every provider concurrently.

    Each provider runs as its own task under its own deadline, so total
    latency is bounded by the slowest provider, not the sum. Provider
    failures are folded into ERROR results and never fail the aggregate.
    """

    def __init__(self, providers: Iterable[BaseProvider]):
        self.providers: list[BaseProvider] = list(providers)
        names = [p.display_name for p in self.providers]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate provider names: {names}")

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> "ThreatIntelAggregator":
        """Build the standard provider set, in fixed order."""
        return cls(
            [
                VirusTotalProvider(config.virustotal, transport=transport),
                UrlscanProvider(
                    config.urlscan,
                    visibility=config.urlscan_visibility,
                    poll_policy=PollPolicy(
                        max_attempts=config.urlscan_poll_attempts,
                        interval=config.urlscan_poll_interval,
                    ),
                    sleep=sleep,
                    transport=transport,
                ),
                SafeBrowsingProvider(config.safebrowsing, transport=transport),
                PhishTankProvider(config.phishtank, transport=transport),
            ]
        )

    def get(self, name: str) -> Optional[BaseProvider]:
        """Look up a provider by short name or display name."""
        for provider in self.providers:
            if name in (provider.name, provider.display_name):
                return provider
        return None

    def capabilities(self) -> dict[str, bool]:
        """Which providers are configured (never exposes credentials)."""
        return {p.name: p.is_configured() for p in self.providers}

    @property
    def deadline(self) -> float:
        """Longest individual provider deadline."""
        return max((p.deadline for p in self.providers), default=0.0)

    async def check(self, url: str) -> ThreatSummary:
        """Query every provider and collect results in provider order."""
        results = await asyncio.gather(*(self._run(p, url) for p in self.providers))
        summary = ThreatSummary(
            provider_details={result.provider_name: result for result in results}
        )
        logger.debug(
            f"Threat intel for {url}: {summary.report_count} report(s) from "
            f"{summary.usable_count}/{summary.configured_count} usable provider(s)"
        )
        return summary

    async def _run(self, provider: BaseProvider, url: str) -> ProviderResult:
        if not provider.is_configured():
            return provider.not_configured()

        try:
            return await asyncio.wait_for(provider.check(url), timeout=provider.deadline)
        except asyncio.TimeoutError:
            logger.debug(f"{provider.display_name} exceeded its {provider.deadline}s deadline")
            return provider.error(
                f"Provider deadline of {provider.deadline}s exceeded",
                "Timeout",
            )
        except Exception as e:
            # check() is not supposed to raise; keep the other providers intact if it does.
            logger.exception(f"{provider.display_name} check raised unexpectedly")
            return provider.error(str(e) or e.__class__.__name__, "Unexpected")

    async def aclose(self) -> None:
        await asyncio.gather(*(p.aclose() for p in self.providers), return_exceptions=True)

    def __repr__(self) -> str:
        states = ", ".join(
            f"{p.display_name}={'on' if p.is_configured() else ProviderStatus.NOT_CONFIGURED.value}"
            for p in self.providers
        )
        return f"ThreatIntelAggregator({states})"
