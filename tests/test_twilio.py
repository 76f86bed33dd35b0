from __future__ import annotations

import pytest

from lexbot.channel import twilio
from lexbot.channel.twilio import UNLINKED_NOTICE, TwilioGateway, chunk_message, send_unlinked_notice
from lexbot.errors import ConfigurationError, DeliveryError


def test_short_message_is_single_chunk():
    assert chunk_message("hola", 1200) == ["hola"]


def test_chunks_split_on_spaces_within_limit():
    text = " ".join(["palabra"] * 400)
    chunks = chunk_message(text, 1200)
    assert len(chunks) > 1
    assert all(len(c) <= 1200 for c in chunks)
    assert " ".join(chunks) == text


def test_chunks_hard_split_without_whitespace():
    text = "x" * 250
    assert chunk_message(text, 100) == ["x" * 100, "x" * 100, "x" * 50]


def test_send_posts_each_chunk(monkeypatch):
    posted: list[dict] = []

    def fake_post_form(url, data, auth=None, **kwargs):
        posted.append({"url": url, "data": data, "auth": auth})
        return {"sid": f"SM{len(posted)}", "status": "queued"}

    monkeypatch.setattr(twilio, "post_form", fake_post_form)
    monkeypatch.setattr(twilio.settings, "WHATSAPP_MAX_MESSAGE_LENGTH", 10)
    gateway = TwilioGateway(account_sid="AC1", auth_token="tok", from_number="+1000")
    gateway.send("+1555", "uno dos tres cuatro")

    assert [p["data"]["Body"] for p in posted] == ["uno dos", "tres", "cuatro"]
    assert all(p["data"]["To"] == "whatsapp:+1555" for p in posted)
    assert all(p["data"]["From"] == "whatsapp:+1000" for p in posted)
    assert posted[0]["url"].endswith("/Accounts/AC1/Messages.json")
    assert posted[0]["auth"] == ("AC1", "tok")


def test_send_failure_raises_delivery_error(monkeypatch):
    def fake_post_form(*args, **kwargs):
        raise RuntimeError("rejected")

    monkeypatch.setattr(twilio, "post_form", fake_post_form)
    gateway = TwilioGateway(account_sid="AC1", auth_token="tok", from_number="+1000")
    with pytest.raises(DeliveryError):
        gateway.send("+1555", "hola")


def test_send_without_credentials(monkeypatch):
    monkeypatch.setattr(twilio.settings, "TWILIO_ACCOUNT_SID", None)
    monkeypatch.setattr(twilio.settings, "TWILIO_AUTH_TOKEN", None)
    with pytest.raises(ConfigurationError):
        TwilioGateway().send("+1555", "hola")


def test_typing_indicator_validates_sid(monkeypatch):
    posted: list[dict] = []
    monkeypatch.setattr(twilio, "post_form", lambda url, data, **kw: posted.append(data) or {})
    gateway = TwilioGateway(account_sid="AC1", auth_token="tok", from_number="+1000")

    with pytest.raises(ValueError):
        gateway.set_typing_indicator("not-a-sid")
    assert posted == []

    sid = "SM" + "a" * 32
    gateway.set_typing_indicator(sid)
    assert posted == [{"messageId": sid, "channel": "whatsapp"}]


def test_unlinked_notice():
    class DummyGateway:
        def __init__(self):
            self.sent: list[tuple[str, str]] = []

        def send(self, address, body):
            self.sent.append((address, body))

        def set_typing_indicator(self, message_id):
            pass

    gateway = DummyGateway()
    send_unlinked_notice(gateway, "whatsapp:+1555")
    assert gateway.sent == [("whatsapp:+1555", UNLINKED_NOTICE)]


def test_send_is_not_repeated_after_timeout(monkeypatch):
    import requests

    from lexbot.utils import backoff

    bodies: list[str] = []

    def fake_post(url, data=None, auth=None, timeout=None):
        bodies.append(data["Body"])
        raise requests.exceptions.ReadTimeout("read timed out")

    monkeypatch.setattr(backoff.time, "sleep", lambda _: None)
    monkeypatch.setattr("lexbot.utils.http.requests.post", fake_post)
    gateway = TwilioGateway(account_sid="AC1", auth_token="tok", from_number="+1000")

    with pytest.raises(DeliveryError):
        gateway.send("+1555", "hola")
    assert bodies == ["hola"]


def test_typing_indicator_still_retries(monkeypatch):
    import requests

    from lexbot.utils import backoff

    calls = 0

    class FakeResp:
        def raise_for_status(self):
            pass

        def json(self):
            return {}

    def fake_post(url, data=None, auth=None, timeout=None):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise requests.exceptions.ConnectionError("reset")
        return FakeResp()

    monkeypatch.setattr(backoff.time, "sleep", lambda _: None)
    monkeypatch.setattr("lexbot.utils.http.requests.post", fake_post)
    gateway = TwilioGateway(account_sid="AC1", auth_token="tok", from_number="+1000")
    gateway.set_typing_indicator("SM" + "a" * 32)
    assert calls == 2
