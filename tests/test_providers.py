"""Tests for threat-intelligence providers (no network: httpx.MockTransport)."""

import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from phishguard.analyzer.models import ProviderStatus
from phishguard.config import ProviderConfig
from phishguard.intel.phishtank import PhishTankProvider
from phishguard.intel.polling import PollPolicy
from phishguard.intel.safebrowsing import SafeBrowsingProvider
from phishguard.intel.urlscan import UrlscanProvider
from phishguard.intel.virustotal import VirusTotalProvider, url_identifier

KEY = ProviderConfig(api_key="test-key", timeout=2.0)
TARGET = "https://test.example.com"


class _Recorder:
    """MockTransport handler that answers from a route function and records requests."""

    def __init__(self, route):
        self.route = route
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.route(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def _vt_report(malicious: int, *, vendor_result: str = "malicious site") -> dict:
    return {
        "data": {
            "attributes": {
                "last_analysis_stats": {"malicious": malicious, "suspicious": 0, "undetected": 10, "harmless": 60},
                "last_analysis_results": {
                    "VendorA": {"category": "malicious" if malicious else "harmless", "result": vendor_result},
                    "VendorB": {"category": "harmless", "result": "clean"},
                },
                "reputation": -5,
                "times_submitted": 3,
                "title": "Login",
            }
        }
    }


# --- VirusTotal ---------------------------------------------------------------


def test_url_identifier_is_unpadded_base64():
    assert url_identifier(TARGET) == "aHR0cHM6Ly90ZXN0LmV4YW1wbGUuY29t"
    assert "=" not in url_identifier("https://a.example/")


@pytest.mark.asyncio
async def test_virustotal_flagged():
    rec = _Recorder(lambda r: httpx.Response(200, json=_vt_report(3, vendor_result="phishing")))
    provider = VirusTotalProvider(KEY, transport=rec.transport)

    result = await provider.check(TARGET)

    assert result.status == ProviderStatus.OK_FLAGGED
    assert result.contributes_to_report_count
    assert result.threat_types == ("malware", "phishing")
    assert result.evidence["malicious"] == 3
    assert result.evidence["total"] == 73
    assert result.evidence["flaggedVendors"][0]["engine"] == "VendorA"
    request = rec.requests[0]
    assert request.url.path == "/api/v3/urls/aHR0cHM6Ly90ZXN0LmV4YW1wbGUuY29t"
    assert request.headers["x-apikey"] == "test-key"


@pytest.mark.asyncio
async def test_virustotal_clean():
    rec = _Recorder(lambda r: httpx.Response(200, json=_vt_report(0)))
    result = await VirusTotalProvider(KEY, transport=rec.transport).check(TARGET)

    assert result.status == ProviderStatus.OK_CLEAN
    assert not result.contributes_to_report_count
    assert result.threat_types == ()


@pytest.mark.asyncio
async def test_virustotal_unknown_url_is_submitted_in_background():
    def route(request):
        if request.method == "GET":
            return httpx.Response(404, json={"error": {"code": "NotFoundError"}})
        return httpx.Response(200, json={"data": {"id": "u-123", "type": "analysis"}})

    rec = _Recorder(route)
    provider = VirusTotalProvider(KEY, transport=rec.transport)

    result = await provider.check(TARGET)
    assert result.status == ProviderStatus.SUBMITTED
    assert not result.contributes_to_report_count

    await provider.drain()
    post = [r for r in rec.requests if r.method == "POST"]
    assert len(post) == 1
    assert post[0].url.path == "/api/v3/urls"
    assert parse_qs(post[0].content.decode()) == {"url": [TARGET]}
    assert provider.pending_submissions == 0


@pytest.mark.asyncio
async def test_virustotal_failed_submission_is_silent():
    def route(request):
        if request.method == "GET":
            return httpx.Response(404)
        raise httpx.ConnectError("refused", request=request)

    provider = VirusTotalProvider(KEY, transport=_Recorder(route).transport)
    result = await provider.check(TARGET)
    await provider.drain()
    assert result.status == ProviderStatus.SUBMITTED


@pytest.mark.asyncio
async def test_virustotal_close_lets_pending_submission_land():
    delivered = []

    async def route(request):
        if request.method == "GET":
            return httpx.Response(404)
        await asyncio.sleep(0.2)
        delivered.append(parse_qs(request.content.decode())["url"][0])
        return httpx.Response(200, json={"data": {"id": "u-456"}})

    provider = VirusTotalProvider(KEY, transport=httpx.MockTransport(route))

    result = await provider.check(TARGET)
    await provider.aclose()

    assert result.status == ProviderStatus.SUBMITTED
    assert delivered == [TARGET]
    assert provider.pending_submissions == 0


@pytest.mark.asyncio
async def test_virustotal_close_cancels_submission_after_grace():
    delivered = []

    async def route(request):
        if request.method == "GET":
            return httpx.Response(404)
        await asyncio.sleep(5)
        delivered.append(request)
        return httpx.Response(200, json={})

    provider = VirusTotalProvider(KEY, transport=httpx.MockTransport(route))
    provider.submit_timeout = 0.05

    await provider.check(TARGET)
    await asyncio.wait_for(provider.aclose(), timeout=2)

    assert delivered == []
    assert provider.pending_submissions == 0


@pytest.mark.asyncio
async def test_virustotal_api_error():
    rec = _Recorder(lambda r: httpx.Response(500, text="internal"))
    result = await VirusTotalProvider(KEY, transport=rec.transport).check(TARGET)

    assert result.status == ProviderStatus.ERROR
    assert result.evidence["errorType"] == "API Error"
    assert result.evidence["statusCode"] == 500
    assert result.evidence["error"] == "internal"


@pytest.mark.asyncio
async def test_rate_limit_maps_to_error():
    rec = _Recorder(lambda r: httpx.Response(429, headers={"Retry-After": "30"}))
    result = await VirusTotalProvider(KEY, transport=rec.transport).check(TARGET)

    assert result.status == ProviderStatus.ERROR
    assert result.evidence["errorType"] == "Rate Limited"
    assert result.evidence["retryAfter"] == 30


@pytest.mark.asyncio
async def test_timeout_maps_to_error():
    def route(request):
        raise httpx.ReadTimeout("slow", request=request)

    result = await VirusTotalProvider(KEY, transport=_Recorder(route).transport).check(TARGET)
    assert result.status == ProviderStatus.ERROR
    assert result.evidence["errorType"] == "Timeout"


@pytest.mark.asyncio
async def test_network_error_maps_to_error():
    def route(request):
        raise httpx.ConnectError("refused", request=request)

    result = await VirusTotalProvider(KEY, transport=_Recorder(route).transport).check(TARGET)
    assert result.status == ProviderStatus.ERROR
    assert result.evidence["errorType"] == "Network Error"


@pytest.mark.asyncio
async def test_malformed_json_maps_to_error():
    rec = _Recorder(lambda r: httpx.Response(200, text="<html>not json</html>"))
    result = await VirusTotalProvider(KEY, transport=rec.transport).check(TARGET)
    assert result.status == ProviderStatus.ERROR
    assert result.evidence["errorType"] == "Unexpected"


@pytest.mark.asyncio
@pytest.mark.parametrize("api_key", ["", "   ", "YOUR_PHISHTANK_KEY_HERE"])
async def test_missing_or_placeholder_key_is_not_configured(api_key):
    rec = _Recorder(lambda r: httpx.Response(200, json={}))
    config = ProviderConfig(api_key=api_key)
    for provider in (
        VirusTotalProvider(config, transport=rec.transport),
        UrlscanProvider(config, transport=rec.transport),
        SafeBrowsingProvider(config, transport=rec.transport),
        PhishTankProvider(config, transport=rec.transport),
    ):
        result = await provider.check(TARGET)
        assert result.status == ProviderStatus.NOT_CONFIGURED
        assert result.evidence == {}
    assert rec.requests == []


# --- urlscan.io ---------------------------------------------------------------


def _urlscan_result(malicious: bool, categories=()) -> dict:
    return {
        "verdicts": {"overall": {"malicious": malicious, "score": 100 if malicious else 0, "categories": list(categories), "brands": []}},
        "page": {"url": TARGET, "domain": "test.example.com", "ip": "192.0.2.7", "country": "NL", "title": "Sign in"},
        "task": {"screenshotURL": "https://urlscan.io/screenshots/abc.png"},
        "stats": {"requests": 12, "uniqCountries": 2},
    }


def _urlscan_route(poll_answers):
    answers = iter(poll_answers)

    def route(request):
        if request.method == "POST":
            return httpx.Response(200, json={"uuid": "abc", "result": "https://urlscan.io/result/abc/"})
        answer = next(answers)
        if isinstance(answer, Exception):
            raise answer
        return answer

    return route


def _urlscan(rec, no_sleep, **kwargs) -> UrlscanProvider:
    return UrlscanProvider(
        ProviderConfig(api_key="test-key", timeout=10.0),
        poll_policy=PollPolicy(max_attempts=3, interval=5.0),
        sleep=no_sleep,
        transport=rec.transport,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_urlscan_flagged_after_polling(no_sleep):
    rec = _Recorder(
        _urlscan_route(
            [
                httpx.Response(404),
                httpx.Response(404),
                httpx.Response(200, json=_urlscan_result(True, ["phishing"])),
            ]
        )
    )
    result = await _urlscan(rec, no_sleep).check(TARGET)

    assert result.status == ProviderStatus.OK_FLAGGED
    assert result.threat_types == ("phishing",)
    assert result.evidence["attempts"] == 3
    assert result.evidence["verdict"]["categories"] == ["phishing"]
    assert result.evidence["page"]["ip"] == "192.0.2.7"
    assert result.evidence["scanUrl"] == "https://urlscan.io/result/abc/"

    submit = rec.requests[0]
    assert submit.url.path == "/api/v1/scan/"
    assert submit.headers["API-Key"] == "test-key"
    assert json.loads(submit.content) == {"url": TARGET, "visibility": "unlisted"}
    assert [r.url.path for r in rec.requests[1:]] == ["/api/v1/result/abc/"] * 3


@pytest.mark.asyncio
async def test_urlscan_budget_exhaustion_is_processing(no_sleep):
    rec = _Recorder(_urlscan_route([httpx.Response(404)] * 3))
    result = await _urlscan(rec, no_sleep).check(TARGET)

    assert result.status == ProviderStatus.PROCESSING
    assert not result.contributes_to_report_count
    assert result.evidence["attempts"] == 3
    assert result.evidence["uuid"] == "abc"
    assert no_sleep.delays == [5.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_urlscan_transient_poll_errors_are_retried(no_sleep):
    request = httpx.Request("GET", "https://urlscan.io/api/v1/result/abc/")
    rec = _Recorder(
        _urlscan_route(
            [
                httpx.ConnectError("reset", request=request),
                httpx.Response(200, json=_urlscan_result(False)),
            ]
        )
    )
    result = await _urlscan(rec, no_sleep).check(TARGET)

    assert result.status == ProviderStatus.OK_CLEAN
    assert result.evidence["attempts"] == 2


@pytest.mark.asyncio
async def test_urlscan_submit_rejected_is_error(no_sleep):
    rec = _Recorder(lambda r: httpx.Response(400, json={"message": "DNS Error"}))
    result = await _urlscan(rec, no_sleep).check(TARGET)

    assert result.status == ProviderStatus.ERROR
    assert result.evidence["statusCode"] == 400
    assert no_sleep.delays == []


@pytest.mark.asyncio
async def test_urlscan_unexpected_poll_status_is_error(no_sleep):
    rec = _Recorder(_urlscan_route([httpx.Response(500, text="oops")]))
    result = await _urlscan(rec, no_sleep).check(TARGET)
    assert result.status == ProviderStatus.ERROR
    assert result.evidence["errorType"] == "API Error"


@pytest.mark.asyncio
async def test_urlscan_custom_visibility(no_sleep):
    rec = _Recorder(_urlscan_route([httpx.Response(200, json=_urlscan_result(False))]))
    await _urlscan(rec, no_sleep, visibility="private").check(TARGET)
    assert json.loads(rec.requests[0].content)["visibility"] == "private"


def test_urlscan_deadline_covers_poll_budget(no_sleep):
    provider = _urlscan(_Recorder(lambda r: httpx.Response(404)), no_sleep)
    # submit + 3 polls at 10s each, plus 3 * 5s of waiting
    assert provider.deadline == 55.0


@pytest.mark.asyncio
async def test_urlscan_fetch_status(no_sleep):
    pending = _Recorder(lambda r: httpx.Response(404))
    done = _Recorder(lambda r: httpx.Response(200, json=_urlscan_result(True, ["malware"])))

    processing = await _urlscan(pending, no_sleep).fetch_status("abc")
    finished = await _urlscan(done, no_sleep).fetch_status("abc")

    assert processing.status == ProviderStatus.PROCESSING
    assert processing.evidence["apiUrl"] == "https://urlscan.io/api/v1/result/abc/"
    assert finished.status == ProviderStatus.OK_FLAGGED
    assert finished.threat_types == ("malware",)
    assert no_sleep.delays == []
    assert len(pending.requests) == 1


# --- Google Safe Browsing ------------------------------------------------------


@pytest.mark.asyncio
async def test_safebrowsing_match():
    rec = _Recorder(
        lambda r: httpx.Response(
            200,
            json={"matches": [{"threatType": "SOCIAL_ENGINEERING", "platformType": "ANY_PLATFORM", "threat": {"url": TARGET}}]},
        )
    )
    result = await SafeBrowsingProvider(KEY, transport=rec.transport).check(TARGET)

    assert result.status == ProviderStatus.OK_FLAGGED
    assert result.threat_types == ("phishing",)
    assert result.evidence["threatTypes"] == ["SOCIAL_ENGINEERING"]

    request = rec.requests[0]
    assert request.url.params["key"] == "test-key"
    body = json.loads(request.content)
    assert body["threatInfo"]["threatEntries"] == [{"url": TARGET}]


@pytest.mark.asyncio
async def test_safebrowsing_no_match():
    rec = _Recorder(lambda r: httpx.Response(200, json={}))
    result = await SafeBrowsingProvider(KEY, transport=rec.transport).check(TARGET)
    assert result.status == ProviderStatus.OK_CLEAN


# --- PhishTank -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_phishtank_verified_phish():
    rec = _Recorder(
        lambda r: httpx.Response(
            200,
            json={"results": {"url": TARGET, "in_database": True, "phish_id": "42", "verified": True, "valid": True}},
        )
    )
    result = await PhishTankProvider(KEY, transport=rec.transport).check(TARGET)

    assert result.status == ProviderStatus.OK_FLAGGED
    assert result.threat_types == ("phishing",)
    assert result.evidence["phishId"] == "42"
    form = parse_qs(rec.requests[0].content.decode())
    assert form == {"url": [TARGET], "format": ["json"], "app_key": ["test-key"]}


@pytest.mark.asyncio
async def test_phishtank_unknown_url():
    rec = _Recorder(lambda r: httpx.Response(200, json={"results": {"url": TARGET, "in_database": False}}))
    result = await PhishTankProvider(KEY, transport=rec.transport).check(TARGET)
    assert result.status == ProviderStatus.OK_CLEAN


@pytest.mark.asyncio
async def test_phishtank_missing_results_is_error():
    rec = _Recorder(lambda r: httpx.Response(200, json={"meta": {}}))
    result = await PhishTankProvider(KEY, transport=rec.transport).check(TARGET)
    assert result.status == ProviderStatus.ERROR
