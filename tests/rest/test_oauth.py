"""Tests for gatewire.rest.oauth."""

from __future__ import annotations

import json
import urllib.parse
from unittest.mock import patch

import pytest

from gatewire.core.exceptions import APIError
from gatewire.rest.client import RestClient
from gatewire.rest.oauth import OAuthClient, OAuthToken


class _DummyResp:
    def __init__(self, payload: object):
        self._payload = json.dumps(payload).encode("utf-8")

    def read(self):
        return self._payload

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def oauth(identity):
    return OAuthClient(RestClient(identity, base_url="https://api.test"), "app-id", "app-secret")


def test_requires_client_credentials(identity):
    rest = RestClient(identity)
    with pytest.raises(ValueError):
        OAuthClient(rest, "", "secret")
    with pytest.raises(ValueError):
        OAuthClient(rest, "id", "")


def test_authorize_url(oauth):
    url = oauth.authorize_url("https://app.test/cb", ["identify", "guilds"], state="xyz")
    parsed = urllib.parse.urlsplit(url)
    query = dict(urllib.parse.parse_qsl(parsed.query))

    assert url.startswith("https://discord.com/oauth2/authorize?")
    assert query == {
        "client_id": "app-id",
        "redirect_uri": "https://app.test/cb",
        "response_type": "code",
        "scope": "identify guilds",
        "state": "xyz",
    }


@patch("gatewire.rest.client.urllib.request.urlopen")
async def test_exchange_code(mock_urlopen, oauth):
    mock_urlopen.return_value = _DummyResp(
        {"access_token": "at", "token_type": "Bearer", "expires_in": 604800, "refresh_token": "rt", "scope": "identify"}
    )

    token = await oauth.exchange_code("the-code", "https://app.test/cb")

    assert token.access_token == "at"
    assert token.refresh_token == "rt"
    assert not token.expired
    req = mock_urlopen.call_args[0][0]
    assert req.full_url == "https://api.test/v10/oauth2/token"
    assert req.get_header("Authorization") is None
    form = dict(urllib.parse.parse_qsl(req.data.decode()))
    assert form == {
        "client_id": "app-id",
        "client_secret": "app-secret",
        "grant_type": "authorization_code",
        "code": "the-code",
        "redirect_uri": "https://app.test/cb",
    }


@patch("gatewire.rest.client.urllib.request.urlopen")
async def test_refresh_token(mock_urlopen, oauth):
    mock_urlopen.return_value = _DummyResp({"access_token": "new"})

    token = await oauth.refresh_token("rt")

    assert token.access_token == "new"
    form = dict(urllib.parse.parse_qsl(mock_urlopen.call_args[0][0].data.decode()))
    assert form["grant_type"] == "refresh_token"
    assert form["refresh_token"] == "rt"


@patch("gatewire.rest.client.urllib.request.urlopen")
async def test_token_response_without_access_token(mock_urlopen, oauth):
    mock_urlopen.return_value = _DummyResp({"error": "invalid_grant"})

    with pytest.raises(APIError):
        await oauth.exchange_code("bad", "https://app.test/cb")


def test_token_expiry():
    assert not OAuthToken("t").expired
    assert OAuthToken("t", expires_in=10, obtained_at=0).expired
