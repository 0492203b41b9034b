"""Scaleway: IAM application, API key and per-project policies per repository.

Scaleway offers no OIDC federation for CI, so the federated identity of a
project is only its resolved project id; the service identity is an IAM
application holding a long-lived API key.
"""

from __future__ import annotations

from typing import Optional

import structlog

from ..common.context import RunContext
from ..common.errors import FederationError, IdentityError, format_event
from ..common.naming import budget
from ..common.schemas import RepositoryDeclaration, ScalewayAccess, ScalewayConfig
from ..core.federation import FederationDeduplicator
from ..core.grouping import ProviderPolicy, ResolvedRequest
from ..core.publication import SecretPublisher
from .base import CloudProvider, FederatedIdentity, ScalewayIam

LOGGER = structlog.get_logger("repoaccess.providers.scaleway")

DEFAULT_ORGANIZATION_PERMISSIONS = (
    "ProjectReadOnly",
    "IAMApplicationManager",
    "IAMGroupManager",
    "IAMPolicyManager",
    "OrganizationReadOnly",
)

DEFAULT_PROJECT_PERMISSIONS = (
    "ObjectStorageFullAccess",
    "SecretManagerFullAccess",
    "KeyManagerFullAccess",
)


class ScalewayProvider(CloudProvider[FederatedIdentity]):
    name = "scaleway"

    def __init__(self, config: ScalewayConfig, iam: ScalewayIam, publisher: SecretPublisher) -> None:
        self._config = config
        self._iam = iam
        self._publisher = publisher

    def policy(self) -> ProviderPolicy:
        return ProviderPolicy(
            name=self.name,
            allowed=tuple(self._config.projects),
            default_permissions=DEFAULT_PROJECT_PERMISSIONS,
            default_region=self._config.default_region,
            default_zone=self._config.default_zone,
        )

    def select(self, repository: RepositoryDeclaration) -> Optional[ScalewayAccess]:
        return repository.access_permissions.scaleway

    async def federate(self, context: RunContext, target: str) -> FederatedIdentity:
        project_id = self._config.projects.get(target)
        if not project_id:
            raise FederationError(self.name, "project", "no project id configured", target)
        return FederatedIdentity(target=target, identifier=project_id)

    def rules(self, project_id: str, permissions: list[str]) -> list[dict]:
        return [
            {
                "organization_id": self._config.organization_id,
                "permission_set_names": list(DEFAULT_ORGANIZATION_PERMISSIONS),
            },
            {"project_ids": [project_id], "permission_set_names": permissions},
        ]

    async def provision(
        self,
        context: RunContext,
        request: ResolvedRequest,
        federation: FederationDeduplicator[FederatedIdentity],
        mount: Optional[str],
    ) -> None:
        project = request.target
        repository = request.name
        project_id = federation.handle(project).identifier

        try:
            application_id = await self._iam.create_application(
                budget("scaleway-application").name(repository, project),
                f"Continuous Integration Application for the GitHub repository: {repository}",
            )
            for target, permissions in request.effective_permissions(DEFAULT_PROJECT_PERMISSIONS).items():
                await self._iam.create_policy(
                    budget("scaleway-policy").name(repository, target),
                    f"Continuous Integration policy for the GitHub repository: {repository} in project: {target}",
                    application_id,
                    self.rules(federation.handle(target).identifier, permissions),
                )
            key = await self._iam.create_api_key(
                application_id,
                project_id,
                f"Continuous Integration key for the GitHub repository: {repository}",
            )
        except Exception as exc:
            LOGGER.error(
                format_event(self.name, "iam", f"error creating CI application for {repository}", project),
                error=str(exc),
            )
            raise IdentityError(
                self.name, "iam", f"error creating CI application ({exc})", project, repository
            ) from exc

        if key is None:
            LOGGER.info(format_event(self.name, "iam", f"API key already exists for {repository}", project))
            return
        await self._publisher.publish(
            mount,
            "scaleway",
            {
                "access_key": key.access_key,
                "secret_key": key.secret_key,
                "region": request.region or "",
                "zone": request.zone or "",
                "organization_id": self._config.organization_id or "",
                "project_id": project_id,
            },
            provider=self.name,
        )
