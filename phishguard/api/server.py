"""HTTP surface over the scan engine."""

from __future__ import annotations

import json
import logging
from typing import Any

from aiohttp import web

from ..analyzer.models import ProviderStatus, ScanRequest, ScanResult
from ..analyzer.validator import InvalidUrlError
from ..intel.urlscan import UrlscanProvider
from ..pipeline.engine import ScanEngine

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


def _success(data: Any, status: int = 200) -> web.Response:
    return web.json_response({"success": True, "data": data}, status=status, headers=CORS_HEADERS)


def _failure(error: str, message: str, status: int) -> web.Response:
    return web.json_response(
        {"success": False, "error": error, "message": message},
        status=status,
        headers=CORS_HEADERS,
    )


def _request_from_payload(payload: Any) -> ScanRequest:
    """Build a ScanRequest from a JSON body or batch item (TypeError/ValueError on bad input)."""
    if isinstance(payload, str):
        return ScanRequest(url=payload)
    if not isinstance(payload, dict):
        raise TypeError("expected an object with a 'url' field")
    return ScanRequest.from_dict(payload)


class ScanServer:
    """Serves scan, batch, urlscan status, capabilities and health endpoints."""

    def __init__(self, engine: ScanEngine, host: str = "127.0.0.1", port: int = 8080):
        self.engine = engine
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/url/check", self._handle_check)
        app.router.add_post("/api/url/check/batch", self._handle_batch)
        app.router.add_get("/api/urlscan/status/{uuid}", self._handle_urlscan_status)
        app.router.add_get("/api/scanner/capabilities", self._handle_capabilities)
        app.router.add_get("/healthz", self._handle_health)
        return app

    async def start(self):
        """Start the HTTP server."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info("Scan API listening on %s:%s", self.host, self.port)

    async def stop(self):
        """Stop the HTTP server."""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._runner = None
        self._site = None

    @staticmethod
    async def _json_body(request: web.Request) -> Any:
        try:
            return await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise web.HTTPBadRequest(
                text=json.dumps({"success": False, "error": "Invalid request", "message": "Body must be JSON"}),
                content_type="application/json",
            )

    async def _handle_check(self, request: web.Request) -> web.Response:
        """POST /api/url/check"""
        body = await self._json_body(request)
        try:
            scan_request = _request_from_payload(body)
            result = await self.engine.scan(scan_request)
        except InvalidUrlError as exc:
            return _failure("Invalid URL", exc.reason, 400)
        except (TypeError, ValueError) as exc:
            return _failure("Invalid request", str(exc), 400)
        return _success(result.to_dict())

    async def _handle_batch(self, request: web.Request) -> web.Response:
        """POST /api/url/check/batch"""
        body = await self._json_body(request)
        urls = body.get("urls") if isinstance(body, dict) else None
        if not isinstance(urls, list) or not urls:
            return _failure("Invalid request", "URLs array is required and must not be empty", 400)
        if len(urls) > self.engine.max_batch_size:
            return _failure(
                "Invalid request",
                f"Maximum {self.engine.max_batch_size} URLs per batch request",
                400,
            )

        # Malformed items are reported per item; the rest of the batch still runs.
        prepared: list[ScanRequest] = []
        item_errors: dict[int, str] = {}
        for index, item in enumerate(urls):
            try:
                prepared.append(_request_from_payload(item))
            except (TypeError, ValueError) as exc:
                item_errors[index] = str(exc)

        outcome_iter = iter(await self.engine.scan_many(prepared))

        results = []
        for index, item in enumerate(urls):
            raw_url = item.get("url") if isinstance(item, dict) else item
            if index in item_errors:
                results.append({"url": raw_url, "success": False, "error": item_errors[index]})
                continue
            outcome = next(outcome_iter)
            if isinstance(outcome, ScanResult):
                results.append({"url": raw_url, "success": True, "result": outcome.to_dict()})
            else:
                reason = outcome.reason if isinstance(outcome, InvalidUrlError) else str(outcome)
                results.append({"url": raw_url, "success": False, "error": reason})

        succeeded = sum(1 for r in results if r["success"])
        return _success(
            {
                "results": results,
                "summary": {
                    "total": len(results),
                    "successful": succeeded,
                    "failed": len(results) - succeeded,
                },
            }
        )

    async def _handle_urlscan_status(self, request: web.Request) -> web.Response:
        """GET /api/urlscan/status/{uuid}"""
        uuid = request.match_info["uuid"]
        provider = self.engine.aggregator.get("urlscan")
        if not isinstance(provider, UrlscanProvider) or not provider.is_configured():
            return _failure("Service unavailable", "URLScan.io is not configured", 503)

        result = await provider.fetch_status(uuid)
        if result.status == ProviderStatus.ERROR:
            return _failure("Upstream error", str(result.evidence.get("error", "")), 502)
        return _success(result.to_dict())

    async def _handle_capabilities(self, request: web.Request) -> web.Response:
        """GET /api/scanner/capabilities"""
        return _success(
            {
                "engines": {"localAnalysis": True, **self.engine.capabilities()},
                "features": {"cloudAnalysis": True, "batch": True, "maxBatchSize": self.engine.max_batch_size},
                "version": VERSION,
            }
        )

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /healthz"""
        capabilities = self.engine.capabilities()
        return web.json_response(
            {
                "status": "ok",
                "version": VERSION,
                "providers": len(capabilities),
                "configuredProviders": sum(1 for on in capabilities.values() if on),
            },
            headers=CORS_HEADERS,
        )

