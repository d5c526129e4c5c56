"""Tests for guarded outbound HTTP requests."""

from __future__ import annotations

import httpx
import pytest

from pilot_automation.automation.http import (
    HTTPRequester,
    HTTPRequestSpec,
    check_url_safety,
    sanitize_headers,
)
from pilot_automation.core.config import HTTPClientConfig, RetryPolicyConfig
from pilot_automation.core.exceptions import HTTPStatusError, RequestBlockedError


def fast_config(**kwargs) -> HTTPClientConfig:
    return HTTPClientConfig(
        retry=RetryPolicyConfig(max_attempts=3, backoff_seconds=0.0), **kwargs
    )


class TestUrlSafety:
    @pytest.mark.parametrize(
        "url",
        [
            "http://localhost:8080/admin",
            "http://127.0.0.1/",
            "http://10.1.2.3/internal",
            "http://192.168.0.10/",
            "http://169.254.169.254/latest/meta-data",
            "http://metadata.google.internal/",
            "https://printer.local/status",
            "ftp://example.com/file",
            "http:///nohost",
        ],
    )
    def test_blocked(self, url: str) -> None:
        assert check_url_safety(url) is not None

    @pytest.mark.parametrize("url", ["https://api.example.com/hook", "http://8.8.8.8/dns"])
    def test_allowed(self, url: str) -> None:
        assert check_url_safety(url) is None


def test_sanitize_headers() -> None:
    assert sanitize_headers({"Host": "evil", "X-Token": "abc"}) == {"X-Token": "abc"}
    editor_form = [
        {"key": "Authorization", "value": "Bearer t"},
        {"key": "X-Off", "value": "1", "enabled": False},
        {"key": "X-Forwarded-For", "value": "1.2.3.4"},
    ]
    assert sanitize_headers(editor_form) == {"Authorization": "Bearer t"}


@pytest.mark.anyio
async def test_json_response(httpx_mock) -> None:
    httpx_mock.add_response(
        method="POST",
        url="https://api.example.com/hook",
        json={"received": True},
    )
    requester = HTTPRequester(fast_config())

    info = await requester.request(
        HTTPRequestSpec(method="post", url="https://api.example.com/hook", body={"lead": "L1"})
    )

    assert info.status == 200
    assert info.body == {"received": True}
    assert info.attempts == 1
    sent = httpx_mock.get_request()
    assert sent.headers["User-Agent"] == "Pilot-Automation/1.0"
    assert sent.content == b'{"lead": "L1"}'


@pytest.mark.anyio
async def test_blocked_url_never_sent() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("request should not be sent")

    requester = HTTPRequester(fast_config(), transport=httpx.MockTransport(handler))
    with pytest.raises(RequestBlockedError):
        await requester.request(HTTPRequestSpec(method="GET", url="http://localhost/admin"))


@pytest.mark.anyio
async def test_retries_server_errors() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, text="ok", headers={"content-type": "text/plain"})

    requester = HTTPRequester(fast_config(), transport=httpx.MockTransport(handler))
    info = await requester.request(HTTPRequestSpec(method="GET", url="https://api.example.com/"))

    assert len(calls) == 3
    assert info.attempts == 3
    assert info.body == "ok"


@pytest.mark.anyio
async def test_client_errors_are_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404, json={"error": "missing"})

    requester = HTTPRequester(fast_config(), transport=httpx.MockTransport(handler))
    with pytest.raises(HTTPStatusError) as excinfo:
        await requester.request(HTTPRequestSpec(method="GET", url="https://api.example.com/x"))

    assert len(calls) == 1
    assert excinfo.value.status_code == 404
    assert excinfo.value.details["body"] == {"error": "missing"}


@pytest.mark.anyio
async def test_oversized_response_is_truncated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"x" * 64, headers={"content-length": "64"})

    requester = HTTPRequester(
        fast_config(max_response_bytes=16), transport=httpx.MockTransport(handler)
    )
    info = await requester.request(HTTPRequestSpec(method="GET", url="https://api.example.com/big"))
    assert info.body == {"_truncated": True, "_size": 64, "_max": 16}


@pytest.mark.anyio
async def test_unsupported_method() -> None:
    with pytest.raises(ValueError):
        await HTTPRequester(fast_config()).request(
            HTTPRequestSpec(method="TRACE", url="https://api.example.com/")
        )


@pytest.mark.anyio
async def test_chunked_response_stops_reading_at_limit() -> None:
    produced = []

    async def chunks():
        for _ in range(1000):
            produced.append(1)
            yield b"abcdefgh"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=chunks(), headers={"content-type": "text/plain"})

    requester = HTTPRequester(
        fast_config(max_response_bytes=20), transport=httpx.MockTransport(handler)
    )
    info = await requester.request(HTTPRequestSpec(method="GET", url="https://api.example.com/feed"))

    assert info.body == "abcdefghabcdefghabcd"
    assert len(produced) < 10


def test_time_budget_covers_attempts_and_backoff() -> None:
    requester = HTTPRequester(HTTPClientConfig(timeout=10, max_timeout=60))
    retry = RetryPolicyConfig(max_attempts=3, backoff_seconds=1.0, backoff_multiplier=2.0)

    assert requester.time_budget(5, retry) == 5 * 3 + 1 + 2
    assert requester.time_budget(None, RetryPolicyConfig(max_attempts=1)) == 10
    assert requester.time_budget(500, RetryPolicyConfig(max_attempts=1)) == 60
