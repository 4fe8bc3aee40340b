"""HTTP transport for the Tailscale directory API."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from pytailnet._constants import OAUTH_SCOPE, OAUTH_TOKEN_ENDPOINT, USER_AGENT
from pytailnet._redact import mask_secret, redact_for_log
from pytailnet.config import TailnetConfig
from pytailnet.exceptions import TailnetConfigError, TailnetTransportError
from pytailnet.session import AccessToken

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the directory source.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`DirectoryTransport`) concrete.
    """

    async def get_json(self, endpoint: str) -> Any:
        ...


class DirectoryTransport:
    """Authenticated JSON-over-HTTP access to the directory API.

    Uses the static API key when configured, otherwise OAuth client
    credentials with a cached access token.
    """

    def __init__(self, config: TailnetConfig, http_session: aiohttp.ClientSession) -> None:
        if not config.api_key and not config.uses_oauth:
            raise TailnetConfigError("Directory transport needs an API key or OAuth client credentials")
        self._config = config
        self._http = http_session
        self._token: AccessToken | None = None

    async def _authorization(self) -> str:
        if self._config.uses_oauth:
            token = await self._ensure_token()
            return token.authorization
        assert self._config.api_key is not None  # noqa: S101
        return f"Bearer {self._config.api_key}"

    async def _ensure_token(self) -> AccessToken:
        if self._token is not None and not self._token.is_expired:
            return self._token

        url = f"{self._config.base_url}{OAUTH_TOKEN_ENDPOINT}"
        form = {
            "grant_type": "client_credentials",
            "client_id": self._config.oauth_client_id or "",
            "client_secret": self._config.oauth_client_secret or "",
            "scope": OAUTH_SCOPE,
        }
        _logger.debug("POST %s form=%s", url, redact_for_log(form))
        payload = await self._request("POST", OAUTH_TOKEN_ENDPOINT, data=form, authorization=None)
        try:
            self._token = AccessToken.model_validate(payload)
        except ValidationError as exc:
            raise TailnetTransportError(
                f"OAuth token response is missing fields: {exc}",
                endpoint=OAUTH_TOKEN_ENDPOINT,
            ) from exc
        _logger.debug("OAuth token obtained, expires_in=%s", self._token.expires_in)
        return self._token

    def invalidate_token(self) -> None:
        self._token = None

    async def get_json(self, endpoint: str) -> Any:
        """GET *endpoint* and return the decoded JSON body."""
        authorization = await self._authorization()
        try:
            return await self._request("GET", endpoint, authorization=authorization)
        except TailnetTransportError as exc:
            if exc.status_code == 401 and self._config.uses_oauth:
                # Token revoked early; fetch a new one and retry once.
                self.invalidate_token()
                authorization = await self._authorization()
                return await self._request("GET", endpoint, authorization=authorization)
            raise

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        authorization: str | None,
        data: dict[str, str] | None = None,
    ) -> Any:
        headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if authorization:
            headers["authorization"] = authorization

        url = f"{self._config.base_url}{endpoint}"
        if authorization and self._config.api_key and not self._config.uses_oauth:
            _logger.debug("%s %s key=%s", method, url, mask_secret(self._config.api_key, visible=10))
        else:
            _logger.debug("%s %s", method, url)

        try:
            async with self._http.request(method, url, headers=headers, data=data) as resp:
                text = await resp.text()
                if resp.status < 200 or resp.status >= 300:
                    raise TailnetTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except TailnetTransportError:
            raise
        except aiohttp.ClientError as exc:
            raise TailnetTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise TailnetTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc
