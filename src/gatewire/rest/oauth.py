"""OAuth2 authorization-code flow.

Builds the consent URL a user visits, then trades the returned ``code``
for an access token (and refreshes it later).  Token requests are
form-encoded and authenticated with the client id/secret, not the bot token.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass, field
from time import time
from typing import Any

from gatewire.core.exceptions import APIError
from gatewire.rest.client import RestClient

AUTHORIZE_URL = "https://discord.com/oauth2/authorize"


@dataclass
class OAuthToken:
    """Token bundle returned by the token endpoint."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    refresh_token: str | None = None
    scope: str = ""
    obtained_at: float = field(default_factory=time)

    @property
    def expired(self) -> bool:
        return bool(self.expires_in) and time() >= self.obtained_at + self.expires_in

    @classmethod
    def from_response(cls, body: dict[str, Any]) -> OAuthToken:
        if not isinstance(body, dict) or "access_token" not in body:
            raise APIError(f"Token endpoint returned no access_token: {body!r}")
        return cls(
            access_token=body["access_token"],
            token_type=body.get("token_type", "Bearer"),
            expires_in=int(body.get("expires_in", 0)),
            refresh_token=body.get("refresh_token"),
            scope=body.get("scope", ""),
        )


class OAuthClient:
    """Authorization-code exchange against ``/oauth2/token``.

    Args:
        rest: Request layer used for the HTTP calls.
        client_id: Application id.
        client_secret: Application secret.
        authorize_url: Consent page URL.
    """

    def __init__(self, rest: RestClient, client_id: str, client_secret: str, authorize_url: str = AUTHORIZE_URL):
        if not client_id or not client_secret:
            raise ValueError("client_id and client_secret are required")
        self.rest = rest
        self.client_id = client_id
        self.client_secret = client_secret
        self._authorize_url = authorize_url

    def authorize_url(self, redirect_uri: str, scopes: list[str], state: str | None = None) -> str:
        """URL to send the user to for consent."""
        query = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
        }
        if state:
            query["state"] = state
        return f"{self._authorize_url}?{urllib.parse.urlencode(query)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthToken:
        return await self._token_request(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri}
        )

    async def refresh_token(self, refresh_token: str) -> OAuthToken:
        return await self._token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})

    async def _token_request(self, form: dict[str, str]) -> OAuthToken:
        form = {"client_id": self.client_id, "client_secret": self.client_secret, **form}
        _, body = await self.rest.perform_request("POST", "/oauth2/token", form=form, auth=False)
        return OAuthToken.from_response(body)
