"""REST request layer.

Thin wrapper around the service's HTTP API with bearer-style token auth.
No external dependencies beyond the standard library; blocking calls run
on a worker thread so they never stall the gateway's event loop.
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from loguru import logger

from gatewire.core.config import DEFAULT_API_BASE, DEFAULT_API_VERSION
from gatewire.core.exceptions import APIError, AuthenticationError, RateLimitedError
from gatewire.core.identity import Identity


class RestClient:
    """Minimal client for the actions a bot takes outside the gateway socket.

    Args:
        identity: Supplies the token and the ``User-Agent`` string.
        base_url: API root, without the version segment.
        api_version: Inserted as ``/v{n}`` after ``base_url``.
        timeout: Per-request timeout in seconds.
        auth_scheme: Prefix of the ``Authorization`` header (``Bot``/``Bearer``).
    """

    def __init__(
        self,
        identity: Identity,
        base_url: str = DEFAULT_API_BASE,
        api_version: int = DEFAULT_API_VERSION,
        timeout: float = 15,
        auth_scheme: str = "Bot",
    ):
        self.identity = identity
        self.api_version = api_version
        self.api_base = f"{base_url.rstrip('/')}/v{api_version}"
        self.timeout = timeout
        self.auth_scheme = auth_scheme

    @classmethod
    def from_config(cls, config: Any, identity: Identity | None = None) -> RestClient:
        settings = config.validated().api
        return cls(
            identity or Identity.from_config(config),
            base_url=settings.base_url,
            api_version=settings.version,
            timeout=settings.timeout,
            auth_scheme=settings.auth_scheme,
        )

    # ── Core request ───────────────────────────────────────────────

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        params: dict[str, Any] | None = None,
        form: dict[str, Any] | None = None,
        auth: bool = True,
    ) -> tuple[int, Any]:
        """Perform one blocking HTTP request and return ``(status, decoded_body)``.

        Raises:
            AuthenticationError: HTTP 401.
            RateLimitedError: HTTP 429.
            APIError: Any other non-2xx status or a network failure.
        """
        url = f"{self.api_base}/{path.lstrip('/')}"
        if params:
            query = urllib.parse.urlencode({k: v for k, v in params.items() if v is not None}, doseq=True)
            if query:
                url = f"{url}?{query}"

        headers: dict[str, str] = {"Accept": "application/json", "User-Agent": self.identity.user_agent}
        if auth:
            headers["Authorization"] = f"{self.auth_scheme} {self.identity.token}".strip()

        data = None
        if form is not None:
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            data = urllib.parse.urlencode(form).encode("utf-8")
        elif body is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(body).encode("utf-8")

        req = urllib.request.Request(url=url, data=data, method=method.upper(), headers=headers)
        logger.debug(f"{method.upper()} {url}")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                status = getattr(resp, "status", 200)
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raw_err = e.read() if hasattr(e, "read") else b""
            raise self._error_for_status(e.code, self._decode(raw_err), e.headers) from e
        except urllib.error.URLError as e:
            raise APIError(f"API request failed: {e}") from e

        return status, self._decode(raw)

    async def perform_request(self, method: str, path: str, body: Any = None, **kwargs: Any) -> tuple[int, Any]:
        """Async form of :meth:`request`, run on a worker thread."""
        return await asyncio.to_thread(self.request, method, path, body, **kwargs)

    @staticmethod
    def _decode(raw: bytes) -> Any:
        if not raw:
            return {}
        text = raw.decode("utf-8", errors="ignore")
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return {"raw": text}

    @staticmethod
    def _error_for_status(status: int, body: Any, headers: Any = None) -> APIError | AuthenticationError:
        message = body.get("message") if isinstance(body, dict) else None
        detail = message or body
        if status == 401:
            return AuthenticationError(f"API rejected the token: {detail}")
        if status == 429:
            retry_after = 0.0
            if isinstance(body, dict) and "retry_after" in body:
                retry_after = float(body["retry_after"])
            elif headers is not None and headers.get("Retry-After"):
                retry_after = float(headers.get("Retry-After"))
            return RateLimitedError(f"Rate limited, retry after {retry_after}s", retry_after=retry_after)
        return APIError(f"API {status}: {detail}", status=status)

    # ── Actions ────────────────────────────────────────────────────

    async def get_gateway_url(self) -> str:
        """Ask the API where the gateway lives."""
        _, body = await self.perform_request("GET", "/gateway")
        url = body.get("url") if isinstance(body, dict) else None
        if not url:
            raise APIError(f"Gateway discovery returned no url: {body!r}")
        return url

    async def send_message(self, channel_id: str | int, content: str, **fields: Any) -> dict[str, Any]:
        """Post a message to a channel.  Extra fields (embeds, tts...) pass through."""
        payload = {"content": content, **fields}
        _, body = await self.perform_request("POST", f"/channels/{channel_id}/messages", payload)
        return body

    async def trigger_typing(self, channel_id: str | int) -> None:
        """Show the typing indicator in a channel for a few seconds."""
        await self.perform_request("POST", f"/channels/{channel_id}/typing")

    async def get_current_user(self) -> dict[str, Any]:
        _, body = await self.perform_request("GET", "/users/@me")
        return body
