"""Tests for gatewire.rest.client."""

from __future__ import annotations

import io
import json
import urllib.error
from unittest.mock import patch

import pytest

from gatewire.core.config import Config
from gatewire.core.exceptions import APIError, AuthenticationError, RateLimitedError
from gatewire.rest.client import RestClient


class _DummyResp:
    def __init__(self, payload: object, status: int = 200):
        self._payload = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        self.status = status

    def read(self):
        return self._payload

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def _http_error(code: int, body: object, headers: dict | None = None) -> urllib.error.HTTPError:
    raw = json.dumps(body).encode("utf-8") if body is not None else b""
    return urllib.error.HTTPError("https://api.test", code, "error", headers or {}, io.BytesIO(raw))


@pytest.fixture
def client(identity):
    return RestClient(identity, base_url="https://api.test/", api_version=10)


def test_api_base(client):
    assert client.api_base == "https://api.test/v10"


@patch("gatewire.rest.client.urllib.request.urlopen")
def test_request_headers(mock_urlopen, client):
    mock_urlopen.return_value = _DummyResp({"ok": True})

    status, body = client.request("GET", "/users/@me")

    assert (status, body) == (200, {"ok": True})
    req = mock_urlopen.call_args[0][0]
    assert req.get_method() == "GET"
    assert req.full_url == "https://api.test/v10/users/@me"
    assert req.get_header("Authorization") == "Bot secret-token"
    assert req.get_header("User-agent") == "testbot (https://example.test, 1.2.3)"
    assert mock_urlopen.call_args[1]["timeout"] == 15


@patch("gatewire.rest.client.urllib.request.urlopen")
def test_request_without_auth_and_with_params(mock_urlopen, client):
    mock_urlopen.return_value = _DummyResp({})

    client.request("GET", "gateway", params={"a": 1, "skip": None}, auth=False)

    req = mock_urlopen.call_args[0][0]
    assert req.full_url == "https://api.test/v10/gateway?a=1"
    assert req.get_header("Authorization") is None


@patch("gatewire.rest.client.urllib.request.urlopen")
def test_form_body(mock_urlopen, client):
    mock_urlopen.return_value = _DummyResp({})

    client.request("POST", "/oauth2/token", form={"grant_type": "x", "code": "a b"})

    req = mock_urlopen.call_args[0][0]
    assert req.get_header("Content-type") == "application/x-www-form-urlencoded"
    assert req.data == b"grant_type=x&code=a+b"


@patch("gatewire.rest.client.urllib.request.urlopen")
def test_non_json_and_empty_bodies(mock_urlopen, client):
    mock_urlopen.return_value = _DummyResp(b"plain text")
    assert client.request("GET", "/x")[1] == {"raw": "plain text"}

    mock_urlopen.return_value = _DummyResp(b"", status=204)
    assert client.request("POST", "/x") == (204, {})


@patch("gatewire.rest.client.urllib.request.urlopen")
def test_401_raises_authentication_error(mock_urlopen, client):
    mock_urlopen.side_effect = _http_error(401, {"message": "401: Unauthorized"})

    with pytest.raises(AuthenticationError, match="Unauthorized"):
        client.request("GET", "/gateway/bot")


@patch("gatewire.rest.client.urllib.request.urlopen")
def test_429_reads_retry_after_from_body(mock_urlopen, client):
    mock_urlopen.side_effect = _http_error(429, {"message": "slow down", "retry_after": 1.5})

    with pytest.raises(RateLimitedError) as exc_info:
        client.request("POST", "/channels/1/messages", {"content": "x"})
    assert exc_info.value.retry_after == 1.5
    assert exc_info.value.status == 429


@patch("gatewire.rest.client.urllib.request.urlopen")
def test_429_reads_retry_after_header(mock_urlopen, client):
    mock_urlopen.side_effect = _http_error(429, None, {"Retry-After": "3"})

    with pytest.raises(RateLimitedError) as exc_info:
        client.request("GET", "/x")
    assert exc_info.value.retry_after == 3.0


@patch("gatewire.rest.client.urllib.request.urlopen")
def test_other_status_raises_api_error(mock_urlopen, client):
    mock_urlopen.side_effect = _http_error(404, {"message": "Unknown Channel"})

    with pytest.raises(APIError, match="Unknown Channel") as exc_info:
        client.request("GET", "/channels/1")
    assert exc_info.value.status == 404


@patch("gatewire.rest.client.urllib.request.urlopen")
def test_network_error(mock_urlopen, client):
    mock_urlopen.side_effect = urllib.error.URLError("no route to host")

    with pytest.raises(APIError, match="no route"):
        client.request("GET", "/x")


@patch("gatewire.rest.client.urllib.request.urlopen")
async def test_get_gateway_url(mock_urlopen, client):
    mock_urlopen.return_value = _DummyResp({"url": "wss://gateway.test"})

    assert await client.get_gateway_url() == "wss://gateway.test"
    assert mock_urlopen.call_args[0][0].full_url.endswith("/v10/gateway")


@patch("gatewire.rest.client.urllib.request.urlopen")
async def test_get_gateway_url_missing(mock_urlopen, client):
    mock_urlopen.return_value = _DummyResp({})

    with pytest.raises(APIError):
        await client.get_gateway_url()


@patch("gatewire.rest.client.urllib.request.urlopen")
async def test_send_message(mock_urlopen, client):
    mock_urlopen.return_value = _DummyResp({"id": "m1", "content": "hi"})

    message = await client.send_message(123, "hi", tts=True)

    assert message["id"] == "m1"
    req = mock_urlopen.call_args[0][0]
    assert req.get_method() == "POST"
    assert req.full_url.endswith("/channels/123/messages")
    assert json.loads(req.data) == {"content": "hi", "tts": True}


@patch("gatewire.rest.client.urllib.request.urlopen")
async def test_trigger_typing_and_current_user(mock_urlopen, client):
    mock_urlopen.return_value = _DummyResp(b"", status=204)
    await client.trigger_typing("55")
    assert mock_urlopen.call_args[0][0].full_url.endswith("/channels/55/typing")

    mock_urlopen.return_value = _DummyResp({"id": "42"})
    assert await client.get_current_user() == {"id": "42"}


def test_from_config(tmp_config_file):
    config = Config(config_file=tmp_config_file, defaults={"api": {"base_url": "https://api.test/", "version": 9}})
    rest = RestClient.from_config(config)

    assert rest.api_base == "https://api.test/v9"
    assert rest.identity.token == "file-token"
    assert rest.identity.intents == 33281
