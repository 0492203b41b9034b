"""Google Cloud IAM backend over the REST APIs, authenticated with application default credentials."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

import google.auth
import httpx
import structlog
from google.auth.exceptions import DefaultCredentialsError
from google.auth.transport.requests import Request

from ..common.errors import BackendError
from ..providers.base import FederatedIdentity, KeyPair
from .http import JsonApi

LOGGER = structlog.get_logger("repoaccess.backends.google")

IAM_URL = "https://iam.googleapis.com/v1"
SERVICE_USAGE_URL = "https://serviceusage.googleapis.com/v1"
RESOURCE_MANAGER_URL = "https://cloudresourcemanager.googleapis.com/v1"
STORAGE_URL = "https://storage.googleapis.com/storage/v1"
GITHUB_ISSUER = "https://token.actions.githubusercontent.com"
WORKLOAD_IDENTITY_USER_ROLE = "roles/iam.workloadIdentityUser"
# serviceusage batchEnable accepts at most 20 services per call
SERVICE_BATCH_SIZE = 20
OPERATION_POLL_SECONDS = 2.0
OPERATION_MAX_POLLS = 60

ATTRIBUTE_MAPPING = {
    "google.subject": "assertion.sub",
    "attribute.actor": "assertion.actor",
    "attribute.repository": "assertion.repository",
    "attribute.repository_owner": "assertion.repository_owner",
}


class GoogleCloudIam(JsonApi):
    service = "google"

    def __init__(
        self,
        client: httpx.AsyncClient,
        scopes: Sequence[str],
        *,
        credentials: Any = None,
        poll_interval: float = OPERATION_POLL_SECONDS,
    ) -> None:
        super().__init__(client, IAM_URL)
        self._scopes = list(scopes)
        self._credentials = credentials
        self._poll_interval = poll_interval
        self._project_numbers: dict[str, str] = {}
        self._policy_locks: dict[str, asyncio.Lock] = {}
        self._credentials_lock = asyncio.Lock()

    async def _headers(self) -> dict[str, str]:
        async with self._credentials_lock:
            if self._credentials is None:
                try:
                    self._credentials, _ = await asyncio.to_thread(google.auth.default, scopes=self._scopes)
                except DefaultCredentialsError as exc:
                    raise BackendError(self.service, "credentials", str(exc)) from exc
            if not self._credentials.valid:
                await asyncio.to_thread(self._credentials.refresh, Request())
        return {"Authorization": f"Bearer {self._credentials.token}"}

    def _lock(self, resource: str) -> asyncio.Lock:
        return self._policy_locks.setdefault(resource, asyncio.Lock())

    async def _wait(self, operation: dict[str, Any], base_url: str) -> dict[str, Any]:
        polls = 0
        while not operation.get("done", False):
            if polls >= OPERATION_MAX_POLLS:
                raise BackendError(self.service, "operation", f"timed out waiting for {operation.get('name')}")
            await asyncio.sleep(self._poll_interval)
            operation = await self.request("GET", f"{base_url}/{operation['name']}")
            polls += 1
        if "error" in operation:
            raise BackendError(self.service, "operation", str(operation["error"].get("message", operation["error"])))
        return operation

    async def _project_number(self, project: str) -> str:
        if project not in self._project_numbers:
            body = await self.request("GET", f"{RESOURCE_MANAGER_URL}/projects/{project}")
            self._project_numbers[project] = str(body["projectNumber"])
        return self._project_numbers[project]

    async def enable_services(self, project: str, services: Sequence[str]) -> None:
        pending = list(dict.fromkeys(services))
        for start in range(0, len(pending), SERVICE_BATCH_SIZE):
            batch = pending[start : start + SERVICE_BATCH_SIZE]
            operation = await self.request(
                "POST",
                f"{SERVICE_USAGE_URL}/projects/{project}/services:batchEnable",
                json={"serviceIds": batch},
            )
            await self._wait(operation, SERVICE_USAGE_URL)
            LOGGER.debug("Enabled services", project=project, services=batch)

    async def create_workload_identity_pool(
        self, project: str, pool_id: str, provider_id: str, owner: str
    ) -> FederatedIdentity:
        number = await self._project_number(project)
        parent = f"projects/{project}/locations/global"
        pool_path = f"{parent}/workloadIdentityPools/{pool_id}"
        if await self.request("GET", pool_path, missing=(404,)) is None:
            operation = await self.request(
                "POST",
                f"{parent}/workloadIdentityPools",
                params={"workloadIdentityPoolId": pool_id},
                json={"displayName": pool_id, "description": f"GitHub Actions for {owner}"},
            )
            await self._wait(operation, IAM_URL)

        provider_path = f"{pool_path}/providers/{provider_id}"
        provider_body = {
            "displayName": provider_id,
            "attributeMapping": ATTRIBUTE_MAPPING,
            "attributeCondition": f"assertion.repository_owner == '{owner}'",
            "oidc": {"issuerUri": GITHUB_ISSUER},
        }
        if await self.request("GET", provider_path, missing=(404,)) is None:
            operation = await self.request(
                "POST",
                f"{pool_path}/providers",
                params={"workloadIdentityPoolProviderId": provider_id},
                json=provider_body,
            )
            await self._wait(operation, IAM_URL)

        pool_name = f"projects/{number}/locations/global/workloadIdentityPools/{pool_id}"
        return FederatedIdentity(
            target=project,
            identifier=f"{pool_name}/providers/{provider_id}",
            attributes={"pool": pool_name},
        )

    async def create_custom_role(
        self, project: str, role_id: str, title: str, description: str, permissions: Sequence[str]
    ) -> str:
        name = f"projects/{project}/roles/{role_id}"
        body = {
            "title": title,
            "description": description,
            "includedPermissions": list(permissions),
            "stage": "GA",
        }
        existing = await self.request("GET", name, missing=(404,))
        if existing is None:
            await self.request("POST", f"projects/{project}/roles", json={"roleId": role_id, "role": body})
        else:
            await self.request(
                "PATCH", name, params={"updateMask": "title,description,includedPermissions,stage"}, json=body
            )
        return name

    async def create_service_account(
        self, project: str, account_id: str, display_name: str, description: str
    ) -> str:
        email = f"{account_id}@{project}.iam.gserviceaccount.com"
        if await self.request("GET", f"projects/{project}/serviceAccounts/{email}", missing=(404,)) is None:
            await self.request(
                "POST",
                f"projects/{project}/serviceAccounts",
                json={
                    "accountId": account_id,
                    "serviceAccount": {"displayName": display_name, "description": description},
                },
            )
        return email

    async def _add_binding(self, resource_url: str, role: str, member: str) -> None:
        async with self._lock(resource_url):
            policy = await self.request("POST", f"{resource_url}:getIamPolicy", json={})
            bindings = policy.setdefault("bindings", [])
            for binding in bindings:
                if binding.get("role") == role and "condition" not in binding:
                    if member in binding.get("members", []):
                        return
                    binding.setdefault("members", []).append(member)
                    break
            else:
                bindings.append({"role": role, "members": [member]})
            await self.request("POST", f"{resource_url}:setIamPolicy", json={"policy": policy})

    async def add_project_member(self, project: str, role: str, member: str) -> None:
        await self._add_binding(f"{RESOURCE_MANAGER_URL}/projects/{project}", role, member)

    async def bind_workload_identity(self, project: str, email: str, member: str) -> None:
        resource = f"{IAM_URL}/projects/{project}/serviceAccounts/{email}"
        await self._add_binding(resource, WORKLOAD_IDENTITY_USER_ROLE, member)

    async def create_hmac_key(self, project: str, email: str) -> Optional[KeyPair]:
        listing = await self.request(
            "GET", f"{STORAGE_URL}/projects/{project}/hmacKeys", params={"serviceAccountEmail": email}
        )
        if any(item.get("state") == "ACTIVE" for item in (listing or {}).get("items", [])):
            return None
        created = await self.request(
            "POST",
            f"{STORAGE_URL}/projects/{project}/hmacKeys",
            params={"serviceAccountEmail": email},
        )
        return KeyPair(access_key=created["metadata"]["accessId"], secret_key=created["secret"])
