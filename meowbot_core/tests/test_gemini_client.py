import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from meowbot_core.domain.exceptions import ApiError, ErrorKind, NetworkError, RateLimitError, ValidationError
from meowbot_core.providers import create_provider
from meowbot_core.providers.gemini_client import GeminiClient
from meowbot_core.providers.registry import GEMINI_CONFIG, resolve_model
from meowbot_core.resilience.classifier import classify


class FakeResponse:
    def __init__(self, status_code=200, lines=None, body=b""):
        self.status_code = status_code
        self._lines = lines or []
        self._body = body
        self.closed = False

    async def aiter_lines(self):
        for line in self._lines:
            yield line

    async def aread(self):
        return self._body

    async def aclose(self):
        self.closed = True


class FakeHttpClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def build_request(self, method, url, params=None, json=None, headers=None):
        req = SimpleNamespace(method=method, url=url, params=params, json=json, headers=headers)
        self.requests.append(req)
        return req

    async def send(self, request, stream=False):
        assert stream is True
        if self.error is not None:
            raise self.error
        return self.response

    async def aclose(self):
        self.closed = True


def make_cfg(**overrides):
    values = dict(
        gemini_api_key="test-key-0123456789",
        gemini_base_url="https://example.test/v1beta",
        gemini_model="slides",
        http_timeout=5,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


async def collect(client, prompt):
    stream = await client.open_stream(prompt)
    return [chunk async for chunk in stream]


def test_open_stream_parses_sse_lines():
    chunk1 = {"candidates": [{"content": {"parts": [{"text": "Once"}]}}]}
    chunk2 = {"candidates": [{"content": {"parts": [{"inlineData": {"data": "IMG"}}]}}]}
    resp = FakeResponse(
        lines=[
            "data: " + json.dumps(chunk1),
            "",
            "data: {broken",
            "data: " + json.dumps(chunk2),
            "data: [DONE]",
        ]
    )
    http = FakeHttpClient(response=resp)
    client = GeminiClient(cfg=make_cfg(), http_client=http)

    chunks = asyncio.run(collect(client, "tell me about cats"))

    assert chunks == [chunk1, chunk2]
    assert resp.closed
    req = http.requests[0]
    assert req.method == "POST"
    assert req.url == "https://example.test/v1beta/models/gemini-2.0-flash-exp:streamGenerateContent"
    assert req.params == {"alt": "sse"}
    assert req.headers["x-goog-api-key"] == "test-key-0123456789"
    assert req.json["contents"][0]["parts"][0]["text"] == "tell me about cats"
    assert req.json["generationConfig"]["responseModalities"] == ["TEXT", "IMAGE"]


def test_rate_limit_status_raises_rate_limit_error():
    resp = FakeResponse(status_code=429, body=b"quota")
    client = GeminiClient(cfg=make_cfg(), http_client=FakeHttpClient(response=resp))
    with pytest.raises(RateLimitError) as ei:
        asyncio.run(client.open_stream("x"))
    assert resp.closed
    assert classify(ei.value).kind is ErrorKind.UPSTREAM_RATE_LIMIT


def test_server_error_raises_api_error_with_status():
    resp = FakeResponse(status_code=503, body=b"overloaded")
    client = GeminiClient(cfg=make_cfg(), http_client=FakeHttpClient(response=resp))
    with pytest.raises(ApiError) as ei:
        asyncio.run(client.open_stream("x"))
    assert ei.value.http_status == 503
    assert ei.value.message == "overloaded"
    assert classify(ei.value).kind is ErrorKind.SERVICE_UNAVAILABLE


def test_missing_api_key_is_classified_as_auth():
    http = FakeHttpClient(response=FakeResponse())
    client = GeminiClient(cfg=make_cfg(gemini_api_key=None), http_client=http)
    with pytest.raises(ValidationError) as ei:
        asyncio.run(client.open_stream("x"))
    assert http.requests == []
    assert classify(ei.value).kind is ErrorKind.AUTH


def test_connect_error_is_wrapped_as_network_error():
    http = FakeHttpClient(error=httpx.ConnectError("connection refused"))
    client = GeminiClient(cfg=make_cfg(), http_client=http)
    with pytest.raises(NetworkError):
        asyncio.run(client.open_stream("x"))


def test_aclose_closes_injected_client():
    http = FakeHttpClient()
    client = GeminiClient(cfg=make_cfg(), http_client=http)
    asyncio.run(client.aclose())
    assert http.closed


def test_create_provider_and_model_resolution():
    assert isinstance(create_provider(cfg=make_cfg()), GeminiClient)
    with pytest.raises(KeyError):
        create_provider("openai", cfg=make_cfg())
    assert resolve_model(GEMINI_CONFIG, "text").provider_model == "gemini-2.0-flash"
    assert resolve_model(GEMINI_CONFIG, "gemini-exp-custom").provider_model == "gemini-exp-custom"
