# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for AsyncRetryableHttpClient.
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from utils.http_client import AsyncRetryableHttpClient


class Sequence:
    """Serve canned responses in order and count requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(handler, **kwargs):
    kwargs.setdefault("base_delay", 0)
    return AsyncRetryableHttpClient(transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_retries_on_503_then_succeeds():
    handler = Sequence(httpx.Response(503), httpx.Response(200, json={"ok": True}))

    async with _client(handler, max_retries=2) as client:
        response = await client.get("https://api.example.com/ping")

    assert response.json() == {"ok": True}
    assert handler.calls == 2


@pytest.mark.asyncio
async def test_non_retryable_status_raises_immediately():
    handler = Sequence(httpx.Response(404), httpx.Response(200))

    async with _client(handler, max_retries=3) as client:
        with pytest.raises(httpx.HTTPStatusError) as excinfo:
            await client.get("https://api.example.com/missing")

    assert excinfo.value.response.status_code == 404
    assert handler.calls == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    handler = Sequence(httpx.Response(500), httpx.Response(500), httpx.Response(500))

    async with _client(handler, max_retries=2) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await client.get("https://api.example.com/flaky")

    assert handler.calls == 3


@pytest.mark.asyncio
async def test_network_error_retried():
    request = httpx.Request("GET", "https://api.example.com/ping")
    handler = Sequence(
        httpx.ConnectError("refused", request=request),
        httpx.Response(200),
    )

    async with _client(handler, max_retries=1) as client:
        response = await client.get("https://api.example.com/ping")

    assert response.status_code == 200
    assert handler.calls == 2


@pytest.mark.asyncio
async def test_network_error_raised_when_retries_exhausted():
    request = httpx.Request("GET", "https://api.example.com/ping")
    handler = Sequence(httpx.ReadTimeout("slow", request=request))

    async with _client(handler, max_retries=0) as client:
        with pytest.raises(httpx.ReadTimeout):
            await client.get("https://api.example.com/ping")


@pytest.mark.asyncio
async def test_rate_limit_honours_retry_after():
    handler = Sequence(
        httpx.Response(429, headers={"Retry-After": "0"}),
        httpx.Response(200),
    )

    async with _client(handler, max_retries=1) as client:
        response = await client.get("https://api.example.com/ping")

    assert response.status_code == 200
    assert handler.calls == 2


@pytest.mark.asyncio
async def test_rate_limit_beyond_cap_not_retried():
    handler = Sequence(httpx.Response(429, headers={"Retry-After": "120"}), httpx.Response(200))

    async with _client(handler, max_retries=3, max_retry_after=60) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await client.get("https://api.example.com/ping")

    assert handler.calls == 1


@pytest.mark.asyncio
async def test_custom_methods_pass_through():
    seen = []

    def handler(request):
        seen.append((request.method, request.headers.get("Depth")))
        return httpx.Response(207, text="<multistatus/>")

    async with _client(handler) as client:
        response = await client.request(
            "PROPFIND", "https://dav.example.com/", headers={"Depth": "1"}
        )

    assert response.status_code == 207
    assert seen == [("PROPFIND", "1")]


def test_retry_after_http_date():
    client = AsyncRetryableHttpClient()
    future = datetime.now(timezone.utc) + timedelta(seconds=30)
    response = httpx.Response(429, headers={"Retry-After": format_datetime(future, usegmt=True)})

    delay = client._get_retry_after(response)

    assert 0 < delay <= 30


def test_retry_after_unparseable():
    client = AsyncRetryableHttpClient()
    response = httpx.Response(429, headers={"Retry-After": "soon"})

    assert client._get_retry_after(response) is None


def test_exponential_delay():
    client = AsyncRetryableHttpClient(base_delay=1.5)

    assert [client._calculate_delay(n) for n in range(3)] == [1.5, 3.0, 6.0]
