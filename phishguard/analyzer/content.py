"""Best-effort page content heuristics.

One bounded GET per scan. Only the first ``max_chunks`` chunks of the body are
read, then lightweight regex checks extract the signals. Any failure yields an
empty ContentProfile.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterable, Optional

import aiohttp

from .models import AnalysisOutcome, ContentProfile, ProbeState
from .validator import CanonicalUrl

logger = logging.getLogger(__name__)

USER_AGENT = "PhishGuard-Scanner/1.0"

TEXT_CONTENT_TYPES = (
    "text/",
    "application/xhtml",
    "application/xml",
    "application/javascript",
    "application/json",
)

TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.I)
PASSWORD_INPUT_RE = re.compile(r"""type=["']?password["']?""", re.I)
LOGIN_KEYWORD_RE = re.compile(r"(login|signin|log-in|sign-in)", re.I)
EXTERNAL_LINK_RE = re.compile(r"""href=["']https?://[^"']+["']""", re.I)


def extract_signals(html: str, obfuscation_patterns: Iterable[re.Pattern]) -> ContentProfile:
    """Extract content signals from (possibly truncated) page text."""
    title_match = TITLE_RE.search(html)
    title = title_match.group(1).strip() if title_match else None

    has_login_form = bool(PASSWORD_INPUT_RE.search(html) or LOGIN_KEYWORD_RE.search(html))
    external_links = len(EXTERNAL_LINK_RE.findall(html))
    suspicious_scripts = any(p.search(html) for p in obfuscation_patterns)

    return ContentProfile(
        title=title or None,
        has_login_form=has_login_form,
        external_links=external_links,
        suspicious_scripts=suspicious_scripts,
    )


class ContentHeuristicFetcher:
    """Fetches a page and extracts phishing-relevant content signals."""

    def __init__(
        self,
        *,
        obfuscation_patterns: Iterable[str],
        timeout: float = 10.0,
        max_chunks: int = 100,
        chunk_size: int = 16 * 1024,
        verify_ssl: bool = False,
    ):
        self.obfuscation_patterns = [re.compile(p, re.I) for p in obfuscation_patterns]
        self.timeout = timeout
        self.max_chunks = max_chunks
        self.chunk_size = chunk_size
        self.verify_ssl = verify_ssl

    async def analyze(self, url: CanonicalUrl) -> AnalysisOutcome[ContentProfile]:
        try:
            html = await self._fetch(url.url)
        except asyncio.TimeoutError:
            logger.debug(f"Content fetch timed out for {url}")
            return AnalysisOutcome(
                profile=ContentProfile(),
                state=ProbeState.TIMED_OUT,
                detail=f"GET timed out after {self.timeout}s",
            )
        except (aiohttp.ClientError, OSError, UnicodeError) as e:
            logger.debug(f"Content fetch failed for {url}: {e}")
            return AnalysisOutcome(
                profile=ContentProfile(),
                state=ProbeState.FAILED,
                detail=str(e) or e.__class__.__name__,
            )

        if html is None:
            return AnalysisOutcome(
                profile=ContentProfile(),
                state=ProbeState.FAILED,
                detail="non-text response",
            )

        return AnalysisOutcome(profile=extract_signals(html, self.obfuscation_patterns))

    async def _fetch(self, target: str) -> Optional[str]:
        """GET the page and return at most max_chunks of decoded text."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        headers = {"User-Agent": USER_AGENT, "Accept": "text/html,*/*;q=0.8"}

        async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
            async with session.get(target, ssl=self.verify_ssl, allow_redirects=True) as resp:
                # A missing Content-Type header is treated as text.
                content_type = resp.headers.get("Content-Type", "").split(";")[0].strip().lower()
                if content_type and not content_type.startswith(TEXT_CONTENT_TYPES):
                    logger.debug(f"Skipping non-text content ({content_type}) at {target}")
                    return None

                chunks: list[bytes] = []
                async for chunk in resp.content.iter_chunked(self.chunk_size):
                    chunks.append(chunk)
                    if len(chunks) >= self.max_chunks:
                        break

                charset = resp.charset or "utf-8"
                try:
                    return b"".join(chunks).decode(charset, errors="replace")
                except LookupError:
                    return b"".join(chunks).decode("utf-8", errors="replace")
