"""Base classes for threat-intelligence providers."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..analyzer.models import ProviderResult, ProviderStatus
from ..config import ProviderConfig

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base exception for provider errors."""

    pass


class APIError(ProviderError):
    """API returned an unexpected status."""

    def __init__(self, status_code: int, message: str, response_body: str = ""):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"API error {status_code}: {message}")


class RateLimitError(APIError):
    """Rate limit exceeded."""

    def __init__(self, retry_after: int, response_body: str = ""):
        self.retry_after = retry_after
        super().__init__(429, f"Rate limit exceeded. Retry after {retry_after} seconds.", response_body)


class BaseProvider(ABC):
    """Abstract base class for all threat-intelligence providers.

    A provider is a capability: ``check(url)`` always returns a
    ProviderResult, never raises.
    """

    name: str = "unknown"
    display_name: str = "Unknown"

    def __init__(self, config: ProviderConfig):
        self.config = config

    def is_configured(self) -> bool:
        """Check if this provider has the credentials it needs."""
        return self.config.is_configured

    @property
    def deadline(self) -> float:
        """Upper bound (seconds) on a whole check() call."""
        return self.config.timeout

    def result(
        self,
        status: ProviderStatus,
        evidence: Optional[dict] = None,
        threat_types: tuple[str, ...] = (),
    ) -> ProviderResult:
        return ProviderResult(
            provider_name=self.display_name,
            status=status,
            evidence=evidence or {},
            threat_types=threat_types,
        )

    def not_configured(self) -> ProviderResult:
        return self.result(ProviderStatus.NOT_CONFIGURED)

    def error(self, message: str, error_type: str, **extra: Any) -> ProviderResult:
        return self.result(
            ProviderStatus.ERROR,
            {"error": message, "errorType": error_type, **extra},
        )

    @abstractmethod
    async def check(self, url: str) -> ProviderResult:
        """Look up a URL with this provider."""
        pass

    async def aclose(self) -> None:
        """Release anything that outlives a single check (default: nothing)."""
        return None


class BaseHTTPProvider(BaseProvider):
    """
    Base class for providers that use HTTP APIs.

    Provides:
    - A per-check httpx client (scoped to one scan, closed afterwards)
    - Standard error mapping (timeouts, network errors, API errors) to ERROR

    Subclasses implement `_do_check()` instead of `check()`.
    """

    user_agent: str = "PhishGuard-Scanner/1.0"

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        """Create an HTTP client for a single check."""
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or self.config.timeout),
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        )

    async def check(self, url: str) -> ProviderResult:
        """
        Check with automatic error handling.

        Subclasses should override `_do_check()` instead.
        """
        if not self.is_configured():
            return self.not_configured()
        return await self._guarded(self._do_check, url)

    async def _guarded(
        self,
        operation: Callable[[httpx.AsyncClient, str], Awaitable[ProviderResult]],
        target: str,
    ) -> ProviderResult:
        """Run one HTTP operation, mapping failures to an ERROR result."""
        try:
            async with self._client() as client:
                return await operation(client, target)

        except httpx.TimeoutException:
            logger.debug(f"{self.display_name} timeout for {target}")
            return self.error("Request timed out", "Timeout")

        except RateLimitError as e:
            logger.warning(f"{self.display_name} rate limit exceeded")
            return self.error(e.message, "Rate Limited", retryAfter=e.retry_after)

        except APIError as e:
            logger.warning(f"{self.display_name} API returned {e.status_code}: {e.response_body[:200]}")
            return self.error(
                e.response_body or e.message,
                "API Error",
                statusCode=e.status_code,
            )

        except httpx.HTTPError as e:
            logger.debug(f"{self.display_name} network error for {target}: {e}")
            return self.error(str(e) or e.__class__.__name__, "Network Error")

        except (ValueError, KeyError, TypeError) as e:
            # Malformed JSON / unexpected response shape
            logger.warning(f"{self.display_name} returned an unexpected response: {e}")
            return self.error(f"Unexpected response: {e}", "Unexpected")

    @abstractmethod
    async def _do_check(self, client: httpx.AsyncClient, url: str) -> ProviderResult:
        """
        Perform the actual lookup.

        Subclasses must implement this method. The base `check()` wraps this
        with standard error handling.
        """
        raise NotImplementedError

    @staticmethod
    def raise_for_status(response: httpx.Response) -> None:
        """Raise APIError / RateLimitError for non-2xx responses."""
        if response.status_code == 429:
            try:
                retry_after = int(response.headers.get("Retry-After", 60))
            except ValueError:
                retry_after = 60
            raise RateLimitError(retry_after, response.text)
        if not response.is_success:
            raise APIError(response.status_code, response.reason_phrase or "error", response.text)
