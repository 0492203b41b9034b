"""GitHub REST API backend authenticated by token or GitHub App installation."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional, Sequence

import httpx
import jwt
import structlog

from ..common.errors import BackendError
from .http import JsonApi

LOGGER = structlog.get_logger("repoaccess.backends.github")

GITHUB_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
# installation tokens live one hour; refresh a little early
TOKEN_REFRESH_MARGIN_SECONDS = 300


def mint_app_jwt(app_id: int, private_key: str, now: Optional[int] = None) -> str:
    issued = int(now if now is not None else time.time()) - 60
    payload = {"iat": issued, "exp": issued + 540, "iss": str(app_id)}
    return jwt.encode(payload, private_key, algorithm="RS256")


class GitHubAppAuth:
    """Installation access tokens for a GitHub App."""

    def __init__(self, client: httpx.AsyncClient, app_id: int, private_key: str, installation_id: int) -> None:
        self._client = client
        self._app_id = app_id
        self._private_key = private_key
        self._installation_id = installation_id
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def token(self) -> str:
        async with self._lock:
            if self._token and time.time() < self._expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
                return self._token
            url = f"{GITHUB_API_URL}/app/installations/{self._installation_id}/access_tokens"
            try:
                response = await self._client.post(
                    url,
                    headers={
                        "Authorization": f"Bearer {mint_app_jwt(self._app_id, self._private_key)}",
                        "Accept": "application/vnd.github+json",
                    },
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise BackendError("github", "installation token", str(exc)) from exc
            self._token = response.json()["token"]
            self._expires_at = time.time() + 3600
            LOGGER.debug("GitHub installation token refreshed", installation_id=self._installation_id)
            return self._token


class GitHubRestApi(JsonApi):
    service = "github"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        token: Optional[str] = None,
        app_auth: Optional[GitHubAppAuth] = None,
        base_url: str = GITHUB_API_URL,
    ) -> None:
        if token is None and app_auth is None:
            raise ValueError("either a token or GitHub App credentials are required")
        super().__init__(client, base_url)
        self._token = token
        self._app_auth = app_auth
        self._owner_types: dict[str, str] = {}

    async def _headers(self) -> dict[str, str]:
        token = await self._app_auth.token() if self._app_auth is not None else self._token
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
        }

    async def _owner_type(self, owner: str) -> str:
        if owner not in self._owner_types:
            body = await self.request("GET", f"users/{owner}")
            self._owner_types[owner] = body.get("type", "User")
        return self._owner_types[owner]

    async def get_repository(self, owner: str, name: str) -> Optional[dict[str, Any]]:
        return await self.request("GET", f"repos/{owner}/{name}", missing=(404,))

    async def create_repository(self, owner: str, settings: dict[str, Any]) -> dict[str, Any]:
        path = f"orgs/{owner}/repos" if await self._owner_type(owner) == "Organization" else "user/repos"
        return await self.request("POST", path, json=settings)

    async def update_repository(self, owner: str, name: str, settings: dict[str, Any]) -> dict[str, Any]:
        return await self.request("PATCH", f"repos/{owner}/{name}", json=settings)

    async def replace_topics(self, owner: str, name: str, topics: Sequence[str]) -> None:
        await self.request("PUT", f"repos/{owner}/{name}/topics", json={"names": list(topics)})

    async def configure_pages(self, owner: str, name: str, branch: str) -> None:
        source = {"source": {"branch": branch, "path": "/"}}
        existing = await self.request("GET", f"repos/{owner}/{name}/pages", missing=(404,))
        if existing is None:
            await self.request("POST", f"repos/{owner}/{name}/pages", json=source)
        else:
            await self.request("PUT", f"repos/{owner}/{name}/pages", json=source)

    async def upsert_ruleset(self, owner: str, name: str, ruleset: dict[str, Any]) -> None:
        existing = await self.request("GET", f"repos/{owner}/{name}/rulesets", params={"includes_parents": "false"})
        for item in existing or []:
            if item.get("name") == ruleset["name"]:
                await self.request("PUT", f"repos/{owner}/{name}/rulesets/{item['id']}", json=ruleset)
                return
        await self.request("POST", f"repos/{owner}/{name}/rulesets", json=ruleset)

    async def set_actions_variable(self, owner: str, name: str, variable: str, value: str) -> None:
        body = {"name": variable, "value": value}
        updated = await self.request(
            "PATCH", f"repos/{owner}/{name}/actions/variables/{variable}", json=body, missing=(404,)
        )
        if updated is None:
            await self.request("POST", f"repos/{owner}/{name}/actions/variables", json=body)

    async def delete_repository(self, owner: str, name: str) -> None:
        await self.request("DELETE", f"repos/{owner}/{name}")
