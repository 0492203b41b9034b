"""Vault HTTP API backend: KV v2 mounts, ACL policies and JWT roles."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from .http import JsonApi


class VaultSecretStore(JsonApi):
    service = "vault"

    def __init__(self, client: httpx.AsyncClient, address: str, token: str) -> None:
        super().__init__(client, f"{address.rstrip('/')}/v1")
        self._token = token

    async def _headers(self) -> dict[str, str]:
        return {"X-Vault-Token": self._token}

    async def create_mount(self, path: str, description: str) -> str:
        # Vault answers 400 for an unknown mount path
        existing = await self.request("GET", f"sys/mounts/{path}", missing=(400, 404))
        if existing is None:
            await self.request(
                "POST",
                f"sys/mounts/{path}",
                json={"type": "kv", "description": description, "options": {"version": "2"}},
            )
        return path

    async def read(self, mount: str, key: str) -> Optional[dict[str, Any]]:
        body = await self.request("GET", f"{mount}/data/{key}", missing=(404,))
        if not body:
            return None
        return (body.get("data") or {}).get("data")

    async def write(self, mount: str, key: str, payload: dict[str, Any]) -> None:
        await self.request("POST", f"{mount}/data/{key}", json={"data": payload})

    async def write_policy(self, name: str, policy: str) -> None:
        await self.request("PUT", f"sys/policies/acl/{name}", json={"policy": policy})

    async def write_jwt_role(self, backend: str, name: str, role: dict[str, Any]) -> None:
        await self.request("POST", f"auth/{backend}/role/{name}", json=role)
