"""VirusTotal URL reputation provider.

Lookups are keyed by the URL's unpadded urlsafe base64 encoding. A 404 means
VirusTotal has never seen the URL: it is submitted for analysis in the
background and the check reports SUBMITTED without waiting on the submission.
"""

import asyncio
import base64
import logging
from typing import Any, Optional

import httpx

from ..analyzer.models import ProviderResult, ProviderStatus
from ..config import ProviderConfig
from .base import BaseHTTPProvider, ProviderError

logger = logging.getLogger(__name__)


def url_identifier(url: str) -> str:
    """VirusTotal URL id: urlsafe base64 of the URL without padding."""
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


def _vendor_results(raw: dict) -> list[dict[str, Any]]:
    results = []
    for vendor, data in (raw or {}).items():
        data = data or {}
        results.append(
            {
                "engine": vendor,
                "category": data.get("category") or "undetected",
                "result": data.get("result") or "clean",
                "method": data.get("method") or "",
            }
        )
    return results


class VirusTotalProvider(BaseHTTPProvider):
    """Hash/base64-keyed lookup against the VirusTotal v3 API."""

    name = "virustotal"
    display_name = "VirusTotal"
    api_base = "https://www.virustotal.com/api/v3"
    submit_timeout = 5.0

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config, transport=transport)
        self._background: set[asyncio.Task] = set()

    def _headers(self) -> dict[str, str]:
        return {"x-apikey": self.config.api_key}

    async def _do_check(self, client: httpx.AsyncClient, url: str) -> ProviderResult:
        resp = await client.get(
            f"{self.api_base}/urls/{url_identifier(url)}",
            headers=self._headers(),
        )

        if resp.status_code == 404:
            logger.info("VirusTotal has no record of %s; submitting for analysis", url)
            self._schedule_submission(url)
            return self.result(
                ProviderStatus.SUBMITTED,
                {"message": "URL submitted for analysis"},
            )

        self.raise_for_status(resp)
        attrs = (resp.json().get("data") or {}).get("attributes") or {}
        return self._parse_report(url, attrs)

    def _parse_report(self, url: str, attrs: dict) -> ProviderResult:
        stats = attrs.get("last_analysis_stats") or {}
        malicious = int(stats.get("malicious") or 0)
        suspicious = int(stats.get("suspicious") or 0)
        total = sum(
            int(stats.get(key) or 0)
            for key in ("malicious", "suspicious", "undetected", "harmless", "timeout")
        )

        vendors = _vendor_results(attrs.get("last_analysis_results") or {})
        flagged_vendors = [v for v in vendors if v["category"] in ("malicious", "suspicious")]
        categories = [
            {"source": source, "category": category}
            for source, category in (attrs.get("categories") or {}).items()
        ]

        evidence = {
            "submittedUrl": url,
            "lastFinalUrl": attrs.get("last_final_url") or url,
            "analysisStats": stats,
            "malicious": malicious,
            "suspicious": suspicious,
            "total": total,
            "reputation": attrs.get("reputation") or 0,
            "categories": categories,
            "flaggedVendors": flagged_vendors,
            "title": attrs.get("title") or "",
            "timesSubmitted": attrs.get("times_submitted") or 0,
            "lastAnalysisDate": attrs.get("last_analysis_date"),
        }

        if malicious <= 0:
            logger.debug(f"VirusTotal: clean (0/{total}) for {url}")
            return self.result(ProviderStatus.OK_CLEAN, evidence)

        threat_types = ["malware"]
        labels = " ".join(
            [str(v["result"]) for v in flagged_vendors] + [str(c["category"]) for c in categories]
        ).lower()
        if "phish" in labels:
            threat_types.append("phishing")

        logger.info("VirusTotal: %s/%s engines flagged %s", malicious, total, url)
        return self.result(ProviderStatus.OK_FLAGGED, evidence, tuple(threat_types))

    def _schedule_submission(self, url: str) -> None:
        """Submit the URL without blocking the current scan."""
        task = asyncio.create_task(self._submit(url))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _submit(self, url: str) -> Optional[str]:
        """POST the URL for analysis; returns the analysis id, or None on failure."""
        try:
            async with self._client(timeout=self.submit_timeout) as client:
                resp = await client.post(
                    f"{self.api_base}/urls",
                    headers=self._headers(),
                    data={"url": url},
                )
                self.raise_for_status(resp)
                analysis_id = (resp.json().get("data") or {}).get("id")
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"VirusTotal submission failed for {url}: {e}")
            return None
        except ProviderError as e:
            logger.debug(f"VirusTotal submission rejected for {url}: {e}")
            return None

        logger.debug(f"VirusTotal submission accepted for {url} ({analysis_id})")
        return analysis_id

    @property
    def pending_submissions(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for in-flight background submissions to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        """Let in-flight submissions finish within submit_timeout, then cancel the rest."""
        if not self._background:
            return
        _, pending = await asyncio.wait(set(self._background), timeout=self.submit_timeout)
        for task in pending:
            logger.debug("Cancelling VirusTotal submission still running at shutdown")
            task.cancel()
        await self.drain()
