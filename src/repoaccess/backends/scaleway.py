"""Scaleway IAM backend (applications, API keys and policies)."""

from __future__ import annotations

from typing import Any, Optional, Sequence

import httpx

from ..providers.base import KeyPair
from .http import JsonApi

SCALEWAY_IAM_URL = "https://api.scaleway.com/iam/v1alpha1"


class ScalewayIamApi(JsonApi):
    service = "scaleway"

    def __init__(
        self,
        client: httpx.AsyncClient,
        secret_key: str,
        organization_id: str,
        base_url: str = SCALEWAY_IAM_URL,
    ) -> None:
        super().__init__(client, base_url)
        self._secret_key = secret_key
        self._organization_id = organization_id

    async def _headers(self) -> dict[str, str]:
        return {"X-Auth-Token": self._secret_key}

    async def create_application(self, name: str, description: str) -> str:
        listing = await self.request(
            "GET", "applications", params={"name": name, "organization_id": self._organization_id}
        )
        for application in (listing or {}).get("applications", []):
            if application.get("name") == name:
                return application["id"]
        created = await self.request(
            "POST",
            "applications",
            json={"name": name, "description": description, "organization_id": self._organization_id},
        )
        return created["id"]

    async def create_api_key(self, application_id: str, project_id: str, description: str) -> Optional[KeyPair]:
        listing = await self.request("GET", "api-keys", params={"application_id": application_id})
        if (listing or {}).get("api_keys"):
            return None
        created = await self.request(
            "POST",
            "api-keys",
            json={"application_id": application_id, "default_project_id": project_id, "description": description},
        )
        return KeyPair(access_key=created["access_key"], secret_key=created["secret_key"])

    async def create_policy(
        self, name: str, description: str, application_id: str, rules: Sequence[dict[str, Any]]
    ) -> str:
        listing = await self.request(
            "GET", "policies", params={"policy_name": name, "organization_id": self._organization_id}
        )
        for policy in (listing or {}).get("policies", []):
            if policy.get("name") == name:
                await self.request("PUT", "rules", json={"policy_id": policy["id"], "rules": list(rules)})
                return policy["id"]
        created = await self.request(
            "POST",
            "policies",
            json={
                "name": name,
                "description": description,
                "organization_id": self._organization_id,
                "application_id": application_id,
                "rules": list(rules),
            },
        )
        return created["id"]
