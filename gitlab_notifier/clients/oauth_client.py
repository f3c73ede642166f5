"""GitLab OAuth2 endpoints: authorization URL, code exchange and refresh."""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)


class OAuthExchangeError(RuntimeError):
    """Token endpoint rejected the request; ``body`` holds the provider's answer."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"OAuth token exchange failed ({status_code}): {body}")
        self.status_code = status_code
        self.body = body

    @property
    def invalid_grant(self) -> bool:
        return '"invalid_grant"' in self.body.replace(" ", "")


def authorize_url(base_url: str, app_id: str, redirect_uri: str, state: str) -> str:
    query = urlencode({
        "client_id": app_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "state": state,
        "scope": "api",
    })
    return f"{base_url.rstrip('/')}/oauth/authorize?{query}"


class GitLabOAuthClient:
    """Token endpoint of one GitLab instance for one OAuth application."""

    def __init__(self, base_url: str, app_id: str, app_secret: str, redirect_uri: str) -> None:
        self._token_url = f"{base_url.rstrip('/')}/oauth/token"
        self._app_id = app_id
        self._app_secret = app_secret
        self._redirect_uri = redirect_uri
        self._client = httpx.AsyncClient(timeout=15.0)

    async def _token_request(self, grant: dict) -> dict:
        payload = {
            "client_id": self._app_id,
            "client_secret": self._app_secret,
            "redirect_uri": self._redirect_uri,
            **grant,
        }
        try:
            resp = await self._client.post(
                self._token_url, data=payload, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            raise OAuthExchangeError(0, str(exc)) from exc
        if resp.is_error:
            raise OAuthExchangeError(resp.status_code, resp.text[:500])
        logger.info("OAuth token obtained from %s", self._token_url)
        return resp.json()

    async def exchange(self, code: str) -> dict:
        """Exchange an authorization code for a token response."""
        return await self._token_request({"grant_type": "authorization_code", "code": code})

    async def refresh(self, refresh_token: str) -> dict:
        return await self._token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})

    async def close(self) -> None:
        await self._client.aclose()
