"""Tests for the LINE Messaging API client."""

import base64
import hashlib
import hmac
import json

import pytest
import requests

from line_api import MAX_TEXT_LENGTH, LineApiError, LineClient


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body
        self.content = json.dumps(body).encode() if body is not None else b""
        self.text = self.content.decode()

    def json(self):
        return self._body


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response or FakeResponse(200, {})
        self.exc = exc
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.exc:
            raise self.exc
        return self.response


def test_get_profile():
    session = FakeSession(FakeResponse(200, {"userId": "U1", "displayName": "Alice"}))
    client = LineClient("tok", timeout=3, session=session)

    assert client.get_profile("U1") == "Alice"
    method, url, kwargs = session.calls[0]
    assert method == "GET"
    assert url == "https://api.line.me/v2/bot/profile/U1"
    assert kwargs["headers"]["Authorization"] == "Bearer tok"
    assert kwargs["timeout"] == 3


def test_get_group_member_profile():
    session = FakeSession(FakeResponse(200, {"displayName": "Bob"}))
    client = LineClient("tok", session=session)

    assert client.get_group_member_profile("G1", "U2") == "Bob"
    assert session.calls[0][1] == "https://api.line.me/v2/bot/group/G1/member/U2"


def test_error_status_raises_with_body():
    session = FakeSession(FakeResponse(404, {"message": "Not found"}))
    client = LineClient("tok", session=session)

    with pytest.raises(LineApiError) as exc:
        client.get_profile("U1")
    assert exc.value.status_code == 404
    assert "Not found" in exc.value.body


def test_transport_error_raises():
    client = LineClient("tok", session=FakeSession(exc=requests.Timeout("read timed out")))

    with pytest.raises(LineApiError):
        client.push_text("G1", "hi")


def test_profile_without_name_raises():
    client = LineClient("tok", session=FakeSession(FakeResponse(200, {"userId": "U1"})))

    with pytest.raises(LineApiError):
        client.get_profile("U1")


def test_push_text():
    session = FakeSession(FakeResponse(200, {}))
    client = LineClient("tok", session=session)

    client.push_text("G1", "x" * (MAX_TEXT_LENGTH + 10))

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "https://api.line.me/v2/bot/message/push")
    assert kwargs["json"]["to"] == "G1"
    [message] = kwargs["json"]["messages"]
    assert message["type"] == "text"
    assert len(message["text"]) == MAX_TEXT_LENGTH


def test_verify_signature():
    body = b'{"events":[]}'
    sig = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()
    client = LineClient("tok", channel_secret="secret", session=FakeSession())

    assert client.verify_signature(body, sig) == (True, "")
    assert client.verify_signature(body, "bogus")[0] is False
    assert client.verify_signature(body, None) == (False, "missing signature header")


def test_verify_signature_disabled_without_secret():
    client = LineClient("tok", session=FakeSession())
    assert client.verify_signature(b"{}", None) == (True, "")
