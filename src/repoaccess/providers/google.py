"""Google Cloud: workload identity pools per project, CI service accounts per repository."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from ..common.context import RunContext
from ..common.errors import FederationError, IdentityError, format_event
from ..common.naming import budget
from ..common.schemas import GoogleAccess, GoogleConfig, RepositoryDeclaration
from ..core.federation import FederationDeduplicator
from ..core.grouping import GroupingResult, ProviderPolicy, ResolvedRequest
from ..core.publication import SecretPublisher
from .base import CloudProvider, FederatedIdentity, GoogleIam

LOGGER = structlog.get_logger("repoaccess.providers.google")

WORKLOAD_IDENTITY_USER = "roles/iam.workloadIdentityUser"

DEFAULT_PERMISSIONS = (
    "cloudkms.cryptoKeyVersions.useToDecrypt",
    "cloudkms.cryptoKeyVersions.useToEncrypt",
    "cloudkms.cryptoKeys.getIamPolicy",
    "cloudkms.cryptoKeys.setIamPolicy",
    "cloudkms.locations.get",
    "cloudkms.locations.list",
    "compute.regions.list",
    "iam.serviceAccountKeys.create",
    "iam.serviceAccountKeys.delete",
    "iam.serviceAccountKeys.disable",
    "iam.serviceAccountKeys.enable",
    "iam.serviceAccountKeys.get",
    "iam.serviceAccountKeys.list",
    "iam.serviceAccounts.create",
    "iam.serviceAccounts.delete",
    "iam.serviceAccounts.disable",
    "iam.serviceAccounts.enable",
    "iam.serviceAccounts.get",
    "iam.serviceAccounts.getIamPolicy",
    "iam.serviceAccounts.list",
    "iam.serviceAccounts.setIamPolicy",
    "iam.serviceAccounts.undelete",
    "iam.serviceAccounts.update",
    "resourcemanager.projects.get",
    "resourcemanager.projects.getIamPolicy",
    "resourcemanager.projects.setIamPolicy",
    "resourcemanager.projects.update",
    "storage.hmacKeys.create",
    "storage.hmacKeys.delete",
    "storage.hmacKeys.get",
    "storage.hmacKeys.list",
    "storage.hmacKeys.update",
    "storage.buckets.create",
    "storage.buckets.createTagBinding",
    "storage.buckets.delete",
    "storage.buckets.deleteTagBinding",
    "storage.buckets.get",
    "storage.buckets.getIamPolicy",
    "storage.buckets.getObjectInsights",
    "storage.buckets.list",
    "storage.buckets.listEffectiveTags",
    "storage.buckets.listTagBindings",
    "storage.buckets.setIamPolicy",
    "storage.buckets.update",
    "storage.multipartUploads.abort",
    "storage.multipartUploads.create",
    "storage.multipartUploads.list",
    "storage.multipartUploads.listParts",
    "storage.objects.create",
    "storage.objects.delete",
    "storage.objects.get",
    "storage.objects.getIamPolicy",
    "storage.objects.list",
    "storage.objects.setIamPolicy",
    "storage.objects.update",
)

DEFAULT_SERVICES = (
    "iam.googleapis.com",
    "iamcredentials.googleapis.com",
    "cloudresourcemanager.googleapis.com",
    "cloudkms.googleapis.com",
    "storage.googleapis.com",
    "storage-component.googleapis.com",
    "compute.googleapis.com",
)


def principal_set(pool_name: str, owner: str, repository: str) -> str:
    return f"principalSet://iam.googleapis.com/{pool_name}/attribute.repository/{owner}/{repository}"


class GoogleProvider(CloudProvider[FederatedIdentity]):
    name = "google"

    def __init__(self, config: GoogleConfig, iam: GoogleIam, publisher: SecretPublisher) -> None:
        self._config = config
        self._iam = iam
        self._publisher = publisher

    def policy(self) -> ProviderPolicy:
        return ProviderPolicy(
            name=self.name,
            allowed=tuple(self._config.projects),
            default_permissions=DEFAULT_PERMISSIONS,
            default_region=self._config.default_region,
            default_services=DEFAULT_SERVICES,
        )

    def select(self, repository: RepositoryDeclaration) -> Optional[GoogleAccess]:
        return repository.access_permissions.google

    async def prepare(self, context: RunContext, grouping: GroupingResult) -> None:
        services = grouping.services_by_target(DEFAULT_SERVICES)

        async def enable(project: str) -> None:
            try:
                await self._iam.enable_services(project, services[project])
            except Exception as exc:
                LOGGER.error(
                    format_event(self.name, "service", "error enabling services for project", project),
                    error=str(exc),
                )
                raise FederationError(self.name, "service", f"error enabling services ({exc})", project) from exc

        await asyncio.gather(*(enable(project) for project in services))

    async def federate(self, context: RunContext, target: str) -> FederatedIdentity:
        return await self._iam.create_workload_identity_pool(
            target,
            budget("google-pool").name("", target),
            budget("google-pool-provider").name("", target),
            context.owner,
        )

    async def provision(
        self,
        context: RunContext,
        request: ResolvedRequest,
        federation: FederationDeduplicator[FederatedIdentity],
        mount: Optional[str],
    ) -> None:
        project = request.target
        repository = request.name
        pool = federation.handle(project)
        account_id = budget("google-service-account").name(repository, project)
        role_id = budget("google-role").name(repository, project)
        title = f"GitHub Repository: {repository}"

        try:
            roles = {}
            for target, permissions in request.effective_permissions(DEFAULT_PERMISSIONS).items():
                roles[target] = await self._iam.create_custom_role(
                    target,
                    role_id,
                    title,
                    f"Continuous Integration role for the GitHub repository: {repository}",
                    permissions,
                )
            email = await self._iam.create_service_account(
                project,
                account_id,
                title,
                f"Continuous Integration Service Account for the GitHub repository: {repository}",
            )
            for target, role in roles.items():
                await self._iam.add_project_member(target, role, f"serviceAccount:{email}")
            await self._iam.bind_workload_identity(
                project, email, principal_set(pool.attributes["pool"], context.owner, repository)
            )
        except Exception as exc:
            LOGGER.error(
                format_event(self.name, "iam", f"error creating CI service account for {repository}", project),
                error=str(exc),
            )
            raise IdentityError(
                self.name, "iam", f"error creating CI service account ({exc})", project, repository
            ) from exc

        LOGGER.info(format_event(self.name, "iam", f"CI service account ready for {repository}", project))
        await self._publisher.publish(
            mount,
            "google-cloud",
            {
                "workload_identity_provider": pool.identifier,
                "ci_service_account": email,
                "region": request.region or "",
            },
            provider=self.name,
        )

        if self.hmac_enabled(request):
            await self._publish_hmac_key(project, repository, email, mount)

    def hmac_enabled(self, request: ResolvedRequest) -> bool:
        return self._config.allow_hmac_keys and isinstance(request.request, GoogleAccess) and request.request.hmac_key

    async def _publish_hmac_key(self, project: str, repository: str, email: str, mount: Optional[str]) -> None:
        try:
            key = await self._iam.create_hmac_key(project, email)
        except Exception as exc:
            LOGGER.error(
                format_event(self.name, "hmac", f"error creating HMAC key for {repository}", project), error=str(exc)
            )
            raise IdentityError(self.name, "hmac", f"error creating HMAC key ({exc})", project, repository) from exc
        if key is None:
            LOGGER.info(format_event(self.name, "hmac", f"HMAC key already exists for {repository}", project))
            return
        await self._publisher.publish(
            mount,
            "google-cloud-storage",
            {"access_key_id": key.access_key, "secret_access_key": key.secret_key},
            provider=self.name,
        )
