from __future__ import annotations

import pytest
import requests

import lexbot.utils.backoff as backoff
from lexbot.utils.http import post_form


def test_retry_retries_on_http_error(monkeypatch):
    calls = []

    def _call():
        calls.append(True)
        if len(calls) < 3:
            response = requests.Response()
            response.status_code = 500
            raise requests.exceptions.HTTPError(response=response)
        return "ok"

    monkeypatch.setattr(backoff.random, "uniform", lambda *_: 0.0)
    sleeps: list[float] = []
    monkeypatch.setattr(backoff.time, "sleep", lambda s: sleeps.append(s))

    assert backoff.retry(_call, max_attempts=5) == "ok"
    assert len(calls) == 3
    assert sleeps == [0.0, 0.0]


def test_retry_non_retryable_exception(monkeypatch):
    response = requests.Response()
    response.status_code = 400

    def _call():
        raise requests.exceptions.HTTPError(response=response)

    monkeypatch.setattr(backoff.random, "uniform", lambda *_: 0.0)
    monkeypatch.setattr(backoff.time, "sleep", lambda _: None)

    with pytest.raises(requests.exceptions.HTTPError):
        backoff.retry(_call, max_attempts=5)


def test_status_from_code_attribute():
    class ProviderError(Exception):
        code = 429

    assert backoff.status_from_exception(ProviderError()) == 429
    assert backoff.is_retryable_exception(ProviderError()) is True
    assert backoff.is_retryable_exception(ValueError("nope")) is False
    assert backoff.is_retryable_exception(TimeoutError()) is True


def test_post_form_uses_retries(monkeypatch):
    attempts = 0

    class FakeResp:
        def __init__(self, status_code: int, payload: dict[str, str]):
            self.status_code = status_code
            self._payload = payload

        def raise_for_status(self) -> None:
            if self.status_code >= 400:
                raise requests.exceptions.HTTPError(response=self)

        def json(self) -> dict[str, str]:
            return self._payload

    def fake_post(*args, **kwargs):
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            return FakeResp(503, {})
        return FakeResp(201, {"sid": "SM1"})

    monkeypatch.setattr(backoff.random, "uniform", lambda *_: 0.0)
    monkeypatch.setattr(backoff.time, "sleep", lambda _: None)
    monkeypatch.setattr("lexbot.utils.http.requests.post", fake_post)

    assert post_form("https://example.com", {"a": "b"}) == {"sid": "SM1"}
    assert attempts == 3
