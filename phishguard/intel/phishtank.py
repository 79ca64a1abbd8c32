"""PhishTank checkurl lookup provider."""

import logging

import httpx

from ..analyzer.models import ProviderResult, ProviderStatus
from .base import BaseHTTPProvider

logger = logging.getLogger(__name__)


class PhishTankProvider(BaseHTTPProvider):
    """Synchronous lookup against PhishTank's verified phish database."""

    name = "phishtank"
    display_name = "PhishTank"
    endpoint = "https://checkurl.phishtank.com/checkurl/"
    user_agent = "phishtank/phishguard"

    async def _do_check(self, client: httpx.AsyncClient, url: str) -> ProviderResult:
        resp = await client.post(
            self.endpoint,
            data={"url": url, "format": "json", "app_key": self.config.api_key},
        )
        self.raise_for_status(resp)

        results = resp.json()["results"]
        in_database = bool(results.get("in_database"))
        verified = bool(results.get("verified"))
        valid = bool(results.get("valid"))

        evidence = {
            "inDatabase": in_database,
            "verified": verified,
            "valid": valid,
        }
        if results.get("phish_id"):
            evidence["phishId"] = results.get("phish_id")
        if results.get("phish_detail_page"):
            evidence["detailPage"] = results.get("phish_detail_page")

        if in_database and valid:
            logger.info("PhishTank lists %s as an active phish", url)
            return self.result(ProviderStatus.OK_FLAGGED, evidence, ("phishing",))
        return self.result(ProviderStatus.OK_CLEAN, evidence)
