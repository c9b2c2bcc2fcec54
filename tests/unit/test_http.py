from __future__ import annotations

import pytest

from geolens.common.http import HttpClient, HttpRequestError, RetryConfig, RetryableHttpError


class FakeResponse:
    def __init__(self, status_code: int, text: str = "", content: bytes = b"", content_type: str = ""):
        self.status_code = status_code
        self.text = text
        self.content = content
        self.headers = {"Content-Type": content_type} if content_type else {}


def test_http_get_text_success(monkeypatch):
    client = HttpClient(retry=RetryConfig(max_attempts=1))

    monkeypatch.setattr(client.session, "request", lambda **_kwargs: FakeResponse(200, text='{"features": []}'))
    payload = client.get_text("https://example.com/wms")

    assert payload == '{"features": []}'


def test_http_get_bytes_returns_content_and_type(monkeypatch):
    client = HttpClient(retry=RetryConfig(max_attempts=1))
    monkeypatch.setattr(
        client.session,
        "request",
        lambda **_kwargs: FakeResponse(200, content=b"\xff\xd8", content_type="image/jpeg; charset=binary"),
    )

    assert client.get_bytes("https://example.com/wms") == (b"\xff\xd8", "image/jpeg")


def test_http_retryable_status_raises_retryable_error(monkeypatch):
    client = HttpClient(retry=RetryConfig(max_attempts=1))
    monkeypatch.setattr(client.session, "request", lambda **_kwargs: FakeResponse(503))

    with pytest.raises(RetryableHttpError):
        client.get_text("https://example.com")


def test_http_client_error_is_not_retried(monkeypatch):
    calls = []

    def fake_request(**_kwargs):
        calls.append(1)
        return FakeResponse(404)

    client = HttpClient(retry=RetryConfig(max_attempts=3, multiplier=0.01, max_wait=0.01))
    monkeypatch.setattr(client.session, "request", fake_request)

    with pytest.raises(HttpRequestError):
        client.get_text("https://example.com")
    assert len(calls) == 1


def test_http_retries_then_succeeds(monkeypatch):
    responses = [FakeResponse(502), FakeResponse(200, text="ok")]
    client = HttpClient(retry=RetryConfig(max_attempts=3, multiplier=0.01, max_wait=0.01), rate_per_sec=100.0)
    monkeypatch.setattr(client.session, "request", lambda **_kwargs: responses.pop(0))

    assert client.get_text("https://example.com") == "ok"
