"""urlscan.io submit-then-poll provider.

A scan is submitted, then the result endpoint is polled a bounded number of
times at a fixed interval. The result endpoint answers 404 while the scan is
still running. If the poll budget runs out the provider reports PROCESSING,
which is not an error.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from ..analyzer.models import ProviderResult, ProviderStatus
from ..config import ProviderConfig
from .base import BaseHTTPProvider
from .polling import PollPolicy, Sleep, poll_until

logger = logging.getLogger(__name__)

THREAT_CATEGORIES = ("phishing", "malware")


class UrlscanProvider(BaseHTTPProvider):
    """Sandboxed URL scans via the urlscan.io v1 API."""

    name = "urlscan"
    display_name = "URLScan.io"
    api_base = "https://urlscan.io/api/v1"
    web_base = "https://urlscan.io"

    def __init__(
        self,
        config: ProviderConfig,
        *,
        visibility: str = "unlisted",
        poll_policy: Optional[PollPolicy] = None,
        sleep: Sleep = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config, transport=transport)
        self.visibility = visibility
        self.poll_policy = poll_policy or PollPolicy()
        self._sleep = sleep

    @property
    def deadline(self) -> float:
        """Submission plus every poll request plus the poll sleeps."""
        requests = self.poll_policy.max_attempts + 1
        return requests * self.config.timeout + self.poll_policy.budget

    def _headers(self) -> dict[str, str]:
        return {"API-Key": self.config.api_key}

    def report_links(self, uuid: str) -> dict[str, str]:
        return {
            "uuid": uuid,
            "scanUrl": f"{self.web_base}/result/{uuid}/",
            "apiUrl": f"{self.api_base}/result/{uuid}/",
        }

    async def _do_check(self, client: httpx.AsyncClient, url: str) -> ProviderResult:
        submit = await client.post(
            f"{self.api_base}/scan/",
            headers=self._headers(),
            json={"url": url, "visibility": self.visibility},
        )
        self.raise_for_status(submit)
        uuid = submit.json()["uuid"]
        logger.debug(f"urlscan.io scan submitted for {url} ({uuid})")

        async def fetch() -> Optional[dict]:
            return await self._fetch_result(client, uuid)

        outcome = await poll_until(
            fetch,
            self.poll_policy,
            sleep=self._sleep,
            retry_on=(httpx.TransportError,),
        )

        if outcome.exhausted:
            logger.info(
                "urlscan.io scan %s still processing after %s attempts",
                uuid,
                outcome.attempts,
            )
            evidence = {
                "message": "Scan in progress - results pending",
                "attempts": outcome.attempts,
                **self.report_links(uuid),
            }
            if outcome.last_error is not None:
                evidence["lastError"] = str(outcome.last_error) or outcome.last_error.__class__.__name__
            return self.result(ProviderStatus.PROCESSING, evidence)

        return self._parse_result(uuid, outcome.value, url=url, attempts=outcome.attempts)

    async def _fetch_result(self, client: httpx.AsyncClient, uuid: str) -> Optional[dict]:
        """One result GET: None while the scan is still processing."""
        resp = await client.get(f"{self.api_base}/result/{uuid}/", headers=self._headers())
        if resp.status_code == 404:
            return None
        self.raise_for_status(resp)
        return resp.json()

    def _parse_result(
        self,
        uuid: str,
        data: dict,
        *,
        url: str = "",
        attempts: Optional[int] = None,
    ) -> ProviderResult:
        overall = (data.get("verdicts") or {}).get("overall") or {}
        page = data.get("page") or {}
        task = data.get("task") or {}
        stats = data.get("stats") or {}

        malicious = bool(overall.get("malicious"))
        categories = [str(c).lower() for c in overall.get("categories") or []]

        evidence: dict[str, Any] = {
            **self.report_links(uuid),
            "verdict": {
                "malicious": malicious,
                "score": overall.get("score") or 0,
                "categories": categories,
                "brands": overall.get("brands") or [],
                "tags": overall.get("tags") or [],
            },
            "page": {
                "url": page.get("url") or url,
                "domain": page.get("domain"),
                "ip": page.get("ip"),
                "country": page.get("country"),
                "asn": page.get("asn"),
                "server": page.get("server"),
                "title": page.get("title") or "",
            },
            "task": {
                "reportURL": task.get("reportURL") or f"{self.web_base}/result/{uuid}/",
                "screenshotURL": task.get("screenshotURL"),
                "time": task.get("time"),
            },
            "stats": {
                "requests": stats.get("requests") or 0,
                "domains": stats.get("domains") or 0,
                "ips": stats.get("ips") or 0,
                "countries": stats.get("uniqCountries") or 0,
                "malicious": stats.get("malicious") or 0,
            },
        }
        if attempts is not None:
            evidence["attempts"] = attempts

        if not malicious:
            return self.result(ProviderStatus.OK_CLEAN, evidence)

        threat_types = tuple(c for c in THREAT_CATEGORIES if c in categories) or ("malicious",)
        logger.info("urlscan.io flagged %s (%s)", url or uuid, ", ".join(threat_types))
        return self.result(ProviderStatus.OK_FLAGGED, evidence, threat_types)

    async def fetch_status(self, uuid: str) -> ProviderResult:
        """Look up a previously submitted scan once, without polling."""
        if not self.is_configured():
            return self.not_configured()
        return await self._guarded(self._status_once, uuid)

    async def _status_once(self, client: httpx.AsyncClient, uuid: str) -> ProviderResult:
        data = await self._fetch_result(client, uuid)
        if data is None:
            return self.result(
                ProviderStatus.PROCESSING,
                {"message": "Scan in progress - results pending", **self.report_links(uuid)},
            )
        return self._parse_result(uuid, data)
