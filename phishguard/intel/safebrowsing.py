"""Google Safe Browsing v4 lookup provider."""

import logging

import httpx

from ..analyzer.models import ProviderResult, ProviderStatus
from .base import BaseHTTPProvider

logger = logging.getLogger(__name__)

# Safe Browsing threat type -> normalized threat category
THREAT_TYPE_MAP = {
    "SOCIAL_ENGINEERING": "phishing",
    "MALWARE": "malware",
    "UNWANTED_SOFTWARE": "malware",
    "POTENTIALLY_HARMFUL_APPLICATION": "malware",
}


class SafeBrowsingProvider(BaseHTTPProvider):
    """Synchronous URL lookup via threatMatches:find."""

    name = "safebrowsing"
    display_name = "Google Safe Browsing"
    endpoint = "https://safebrowsing.googleapis.com/v4/threatMatches:find"
    client_id = "phishguard"
    client_version = "1.0"

    def build_payload(self, url: str) -> dict:
        return {
            "client": {"clientId": self.client_id, "clientVersion": self.client_version},
            "threatInfo": {
                "threatTypes": list(THREAT_TYPE_MAP),
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [{"url": url}],
            },
        }

    async def _do_check(self, client: httpx.AsyncClient, url: str) -> ProviderResult:
        resp = await client.post(
            self.endpoint,
            params={"key": self.config.api_key},
            json=self.build_payload(url),
        )
        self.raise_for_status(resp)

        matches = resp.json().get("matches") or []
        if not matches:
            return self.result(ProviderStatus.OK_CLEAN, {"matches": []})

        raw_types = sorted({str(m.get("threatType", "")) for m in matches if m.get("threatType")})
        threat_types = tuple(sorted({THREAT_TYPE_MAP.get(t, "malicious") for t in raw_types}))
        evidence = {
            "matches": [
                {
                    "threatType": m.get("threatType"),
                    "platformType": m.get("platformType"),
                    "cacheDuration": m.get("cacheDuration"),
                }
                for m in matches
            ],
            "threatTypes": raw_types,
        }
        logger.info("Google Safe Browsing flagged %s (%s)", url, ", ".join(raw_types))
        return self.result(ProviderStatus.OK_FLAGGED, evidence, threat_types or ("malicious",))
