"""GitLab group access token backend."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Optional, Sequence
from urllib.parse import quote

import httpx

from .http import JsonApi

MAINTAINER_ACCESS_LEVEL = 40
TOKEN_LIFETIME_DAYS = 365


class GitLabRestApi(JsonApi):
    service = "gitlab"

    def __init__(self, client: httpx.AsyncClient, base_url: str, token: str) -> None:
        super().__init__(client, f"{base_url.rstrip('/')}/api/v4")
        self._token = token

    async def _headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self._token}

    async def create_group_access_token(self, group: str, name: str, scopes: Sequence[str]) -> Optional[str]:
        group_path = quote(group, safe="")
        tokens = await self.request("GET", f"groups/{group_path}/access_tokens")
        for token in tokens or []:
            if token.get("name") == name and token.get("active", True) and not token.get("revoked", False):
                return None
        created = await self.request(
            "POST",
            f"groups/{group_path}/access_tokens",
            json={
                "name": name,
                "description": name,
                "scopes": list(scopes),
                "access_level": MAINTAINER_ACCESS_LEVEL,
                "expires_at": (date.today() + timedelta(days=TOKEN_LIFETIME_DAYS)).isoformat(),
            },
        )
        return created["token"]
