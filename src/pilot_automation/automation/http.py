"""Outbound HTTP for action nodes.

Requests made on behalf of user-authored automations are checked against a
network blocklist, stripped of headers that could spoof routing, bounded in
time and size, and retried on transient failures according to the configured
retry policy.
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import httpx

from ..core.config import HTTPClientConfig, RetryPolicyConfig
from ..core.exceptions import HTTPStatusError, RequestBlockedError
from ..core.logger import get_logger

logger = get_logger("automation.http")

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

BLOCKED_HOSTNAMES = (
    "localhost",
    "127.0.0.1",
    "::1",
    "0.0.0.0",
    "supabase-internal",
    "supabase_kong",
    "supabase_auth",
    "supabase_rest",
    "supabase_realtime",
    "supabase_storage",
    "supabase_db",
    "supabase_gotrue",
    "supabase_functions",
    "metadata.google.internal",
    "169.254.169.254",
)

BLOCKED_URL_PATTERNS = (
    re.compile(r"\.supabase\.co/.*/functions/v1/", re.IGNORECASE),
    re.compile(r"\.internal$", re.IGNORECASE),
    re.compile(r"\.local$", re.IGNORECASE),
    re.compile(r"\.localhost$", re.IGNORECASE),
)

STRIPPED_HEADERS = frozenset({"host", "x-forwarded-for", "x-real-ip"})


def check_url_safety(url: str) -> str | None:
    """Return the reason a URL may not be requested, or None when it is allowed."""
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        return f"Invalid URL: {exc}"
    if parts.scheme not in ("http", "https"):
        return f"Protocol not allowed: {parts.scheme or '(none)'}"
    hostname = (parts.hostname or "").lower()
    if not hostname:
        return "URL has no host"
    if any(hostname == blocked or hostname.endswith(f".{blocked}") for blocked in BLOCKED_HOSTNAMES):
        return f"Blocked hostname: {hostname}"
    for pattern in BLOCKED_URL_PATTERNS:
        if pattern.search(url) or pattern.search(hostname):
            return "URL matches blocked pattern"
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return None
    if (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
        or address.is_unspecified
    ):
        return f"Blocked IP range: {hostname}"
    return None


def sanitize_headers(headers: Any) -> dict[str, str]:
    """Normalise caller headers and drop the ones that must not be forwarded.

    Accepts a mapping or the editor's ``[{"key", "value", "enabled"}]`` list.
    """
    pairs: list[tuple[str, Any]] = []
    if isinstance(headers, Mapping):
        pairs = list(headers.items())
    elif isinstance(headers, list):
        for item in headers:
            if isinstance(item, Mapping) and item.get("key") and item.get("enabled", True):
                pairs.append((str(item["key"]), item.get("value", "")))
    return {
        str(key): str(value)
        for key, value in pairs
        if str(key).lower() not in STRIPPED_HEADERS
    }


@dataclass
class HTTPRequestSpec:
    """A fully rendered outbound request."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    timeout: float | None = None
    follow_redirects: bool = True
    retry: RetryPolicyConfig | None = None


@dataclass
class HTTPResponseInfo:
    """What a step record reports about a remote call."""

    status: int
    reason: str
    headers: dict[str, str]
    body: Any
    duration_ms: float
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "statusText": self.reason,
            "headers": self.headers,
            "body": self.body,
            "durationMs": round(self.duration_ms, 2),
            "attempts": self.attempts,
        }


class HTTPRequester:
    """Performs guarded outbound requests with retry on transient failures."""

    def __init__(
        self,
        config: HTTPClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or HTTPClientConfig()
        self._transport = transport

    async def request(self, spec: HTTPRequestSpec) -> HTTPResponseInfo:
        """Send a request and return the remote status, timing and body.

        Raises:
            RequestBlockedError: If the URL fails the safety check.
            HTTPStatusError: If the final attempt answers with a non-2xx status.
            httpx.HTTPError: If the final attempt fails at the transport level.
        """
        method = spec.method.upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {spec.method}")
        if self.config.block_private_networks:
            reason = check_url_safety(spec.url)
            if reason:
                raise RequestBlockedError(spec.url, reason)

        timeout = min(spec.timeout or self.config.timeout, self.config.max_timeout)
        retry = spec.retry or self.config.retry
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.config.user_agent,
            **sanitize_headers(spec.headers),
        }
        content: bytes | None = None
        if spec.body is not None and method != "GET":
            content = (
                spec.body.encode("utf-8")
                if isinstance(spec.body, str)
                else json.dumps(spec.body, default=str).encode("utf-8")
            )

        attempt = 0
        delay = retry.backoff_seconds
        started = time.perf_counter()
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=spec.follow_redirects,
            transport=self._transport,
        ) as client:
            while True:
                attempt += 1
                try:
                    logger.debug("HTTP %s %s (attempt %s)", method, spec.url, attempt)
                    async with client.stream(
                        method,
                        spec.url,
                        headers=headers,
                        params=spec.params or None,
                        content=content,
                    ) as response:
                        if response.status_code >= 500 and attempt < retry.max_attempts:
                            raise HTTPStatusError(response.status_code, spec.url)
                        info = await self._read_response(response, started, attempt)
                    if not response.is_success:
                        raise HTTPStatusError(
                            response.status_code,
                            spec.url,
                            body=_preview(info.body),
                            details=info.to_dict(),
                        )
                    return info
                except (httpx.TransportError, HTTPStatusError) as exc:
                    retryable = isinstance(exc, httpx.TransportError) or (
                        isinstance(exc, HTTPStatusError) and exc.status_code >= 500
                    )
                    if not retryable or attempt >= retry.max_attempts:
                        raise
                    sleep_for = min(delay, retry.max_backoff_seconds)
                    logger.warning(
                        "HTTP request retry (%s/%s) after error: %s",
                        attempt,
                        retry.max_attempts,
                        exc,
                        extra={"url": spec.url, "attempt": attempt},
                    )
                    await asyncio.sleep(sleep_for)
                    delay = max(delay * retry.backoff_multiplier, retry.backoff_seconds)

    def time_budget(
        self, timeout: float | None = None, retry: RetryPolicyConfig | None = None
    ) -> float:
        """Worst-case seconds a request may spend across all attempts and backoff sleeps."""
        retry = retry or self.config.retry
        total = min(timeout or self.config.timeout, self.config.max_timeout) * retry.max_attempts
        delay = retry.backoff_seconds
        for _ in range(retry.max_attempts - 1):
            total += min(delay, retry.max_backoff_seconds)
            delay = max(delay * retry.backoff_multiplier, retry.backoff_seconds)
        return total

    async def _read_response(
        self, response: httpx.Response, started: float, attempts: int
    ) -> HTTPResponseInfo:
        limit = self.config.max_response_bytes
        length = response.headers.get("content-length")
        if length and length.isdigit() and int(length) > limit:
            body: Any = {"_truncated": True, "_size": int(length), "_max": limit}
        else:
            # Chunked bodies carry no length, so stop reading at the cap.
            raw = bytearray()
            async for chunk in response.aiter_bytes():
                raw.extend(chunk[: limit - len(raw)])
                if len(raw) >= limit:
                    break
            content_type = response.headers.get("content-type", "")
            if "application/json" in content_type:
                try:
                    body = json.loads(raw)
                except ValueError:
                    body = raw.decode("utf-8", errors="replace")
            elif content_type.startswith("text/") or not content_type:
                body = raw.decode("utf-8", errors="replace")
            else:
                body = {"_type": content_type, "_size": len(raw)}
        return HTTPResponseInfo(
            status=response.status_code,
            reason=response.reason_phrase,
            headers=dict(response.headers),
            body=body,
            duration_ms=(time.perf_counter() - started) * 1000,
            attempts=attempts,
        )


def _preview(body: Any, limit: int = 500) -> str:
    text = body if isinstance(body, str) else json.dumps(body, default=str)
    return text[:limit]


__all__ = [
    "ALLOWED_METHODS",
    "HTTPRequestSpec",
    "HTTPRequester",
    "HTTPResponseInfo",
    "check_url_safety",
    "sanitize_headers",
]
