"""Messenger API client with client-credentials token caching."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

import httpx

from ..config import RemoteConfig

logger = logging.getLogger(__name__)


class RemoteAPIError(Exception):
    """Raised when a remote call fails (transport, status, or malformed body)."""


class RemoteAuthError(RemoteAPIError):
    """Raised when an access token cannot be obtained."""


@dataclass
class TokenCache:
    token: Optional[str] = None
    expires_at: float = 0.0  # unix seconds

    def valid_for(self, margin: float, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return bool(self.token) and self.expires_at > now + margin

    def invalidate(self) -> None:
        self.token = None
        self.expires_at = 0.0


class RemoteClient:
    """Read-only access to the remote messenger.

    Owns its token cache. A request that comes back 401 invalidates the
    cached token, re-acquires it once and retries once before failing.
    """

    def __init__(self, config: RemoteConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._config = config
        self._tokens = TokenCache()
        self._http = httpx.AsyncClient(
            base_url=config.api_base,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    @property
    def operator_id(self) -> str:
        return self._config.user_id

    @property
    def token_cache(self) -> TokenCache:
        return self._tokens

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Token ──

    async def get_token(self) -> str:
        if self._tokens.valid_for(self._config.token_refresh_margin_seconds):
            return self._tokens.token

        logger.info("Refreshing messenger access token")
        try:
            resp = await self._http.post(
                "/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._config.client_id,
                    "client_secret": self._config.client_secret,
                },
            )
        except httpx.HTTPError as e:
            raise RemoteAuthError(f"Token request failed: {e}") from e

        if resp.status_code != 200:
            logger.error("Token refresh failed: %s %s", resp.status_code, resp.text[:200])
            raise RemoteAuthError(f"Token refresh failed: {resp.status_code}")

        try:
            tokens = resp.json()
            access_token = tokens["access_token"]
            expires_in = float(tokens.get("expires_in", 0))
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteAuthError("Token response is malformed") from e

        self._tokens.token = access_token
        self._tokens.expires_at = time.time() + expires_in
        logger.info("Messenger access token refreshed")
        return access_token

    # ── Requests ──

    async def _send(self, method: str, path: str, params: dict[str, Any]) -> httpx.Response:
        token = await self.get_token()
        return await self._http.request(
            method,
            path,
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def _request_json(self, method: str, path: str, params: dict[str, Any]) -> dict:
        try:
            resp = await self._send(method, path, params)
            if resp.status_code == 401:
                logger.info("Access token rejected, re-authorizing (%s %s)", method, path)
                self._tokens.invalidate()
                resp = await self._send(method, path, params)
        except httpx.HTTPError as e:
            raise RemoteAPIError(f"{method} {path}: {e}") from e

        if resp.status_code != 200:
            raise RemoteAPIError(f"{method} {path}: HTTP {resp.status_code} {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteAPIError(f"{method} {path}: response is not JSON") from e
        if not isinstance(data, dict):
            raise RemoteAPIError(f"{method} {path}: unexpected response shape")
        return data

    def _account_path(self, version: str) -> str:
        return f"/messenger/{version}/accounts/{quote(self._config.user_id, safe='')}"

    async def list_conversations(self, offset: int, limit: int) -> list[dict]:
        data = await self._request_json(
            "GET",
            f"{self._account_path('v2')}/chats",
            {"chat_types": "u2i", "limit": limit, "offset": offset},
        )
        chats = data.get("chats")
        if not isinstance(chats, list):
            raise RemoteAPIError("Chat listing has no 'chats' list")
        return chats

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[dict]:
        data = await self._request_json(
            "GET",
            f"{self._account_path('v3')}/chats/{quote(conversation_id, safe='')}/messages/",
            {"limit": limit, "offset": 0},
        )
        messages = data.get("messages")
        if not isinstance(messages, list):
            raise RemoteAPIError(f"Messages response for {conversation_id} has no 'messages' list")
        return messages
