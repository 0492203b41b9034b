"""Tailscale OAuth client backend."""

from __future__ import annotations

from typing import Optional, Sequence

import httpx

from ..providers.base import KeyPair
from .http import JsonApi

TAILSCALE_API_URL = "https://api.tailscale.com/api/v2"


class TailscaleRestApi(JsonApi):
    service = "tailscale"

    def __init__(
        self, client: httpx.AsyncClient, api_key: str, tailnet: str = "-", base_url: str = TAILSCALE_API_URL
    ) -> None:
        super().__init__(client, base_url)
        self._api_key = api_key
        self._tailnet = tailnet

    async def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def create_oauth_client(self, description: str, scopes: Sequence[str]) -> Optional[KeyPair]:
        listing = await self.request("GET", f"tailnet/{self._tailnet}/keys", params={"all": "true"})
        for key in (listing or {}).get("keys", []):
            if key.get("keyType") == "client" and key.get("description") == description and not key.get("revoked"):
                return None
        created = await self.request(
            "POST",
            f"tailnet/{self._tailnet}/keys",
            json={"keyType": "client", "description": description, "scopes": list(scopes)},
        )
        return KeyPair(access_key=created["id"], secret_key=created["key"])
