"""Collaborator interfaces and the shared provider pass."""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass, field
from typing import Any, Generic, Mapping, Optional, Protocol, Sequence, TypeVar

import structlog
from opentelemetry import trace

from ..common.context import RunContext
from ..common.errors import ProvisioningError, format_event
from ..common.schemas import CloudAccess, RepositoryDeclaration
from ..core.federation import FederationDeduplicator
from ..core.grouping import GroupingResult, ProviderPolicy, ResolvedRequest, group_repositories

LOGGER = structlog.get_logger("repoaccess.providers")
TRACER = trace.get_tracer("repoaccess.providers")

HandleT = TypeVar("HandleT")


@dataclass(frozen=True)
class FederatedIdentity:
    """Handle of a federated trust object inside one target."""

    target: str
    identifier: str
    attributes: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class KeyPair:
    access_key: str
    secret_key: str


@dataclass
class ProviderReport:
    """Outcome of one provider pass."""

    provider: str
    allowed: list[str] = field(default_factory=list)
    configured: dict[str, list[str]] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    aborted: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)
    grouping: Optional[GroupingResult] = None

    @property
    def ok(self) -> bool:
        return self.aborted is None and not self.failed

    def record(self, repository: str, targets: Sequence[str]) -> None:
        for target in targets:
            self.configured.setdefault(target, []).append(repository)


class SecretStore(Protocol):
    """Secret store holding one mount per repository."""

    @abc.abstractmethod
    async def create_mount(self, path: str, description: str) -> str:
        """Ensure a KV v2 mount exists at ``path`` and return its path."""
        ...

    @abc.abstractmethod
    async def read(self, mount: str, key: str) -> Optional[dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def write(self, mount: str, key: str, payload: dict[str, Any]) -> None:
        ...

    @abc.abstractmethod
    async def write_policy(self, name: str, policy: str) -> None:
        ...

    @abc.abstractmethod
    async def write_jwt_role(self, backend: str, name: str, role: dict[str, Any]) -> None:
        ...


class AwsIam(Protocol):
    @abc.abstractmethod
    async def create_oidc_provider(
        self, account: str, url: str, client_ids: Sequence[str], thumbprints: Sequence[str]
    ) -> str:
        """Ensure the GitHub OIDC provider exists in ``account``; return its ARN."""
        ...

    @abc.abstractmethod
    async def create_role(
        self, account: str, name: str, trust_policy: dict[str, Any], description: str, tags: Mapping[str, str]
    ) -> str:
        """Ensure the role exists with this trust policy; return its ARN."""
        ...

    @abc.abstractmethod
    async def put_role_policy(self, account: str, role: str, name: str, document: dict[str, Any]) -> None:
        ...


class GoogleIam(Protocol):
    @abc.abstractmethod
    async def enable_services(self, project: str, services: Sequence[str]) -> None:
        ...

    @abc.abstractmethod
    async def create_workload_identity_pool(
        self, project: str, pool_id: str, provider_id: str, owner: str
    ) -> FederatedIdentity:
        ...

    @abc.abstractmethod
    async def create_custom_role(
        self, project: str, role_id: str, title: str, description: str, permissions: Sequence[str]
    ) -> str:
        """Ensure the custom role exists with exactly these permissions; return its name."""
        ...

    @abc.abstractmethod
    async def create_service_account(
        self, project: str, account_id: str, display_name: str, description: str
    ) -> str:
        """Ensure the service account exists; return its email."""
        ...

    @abc.abstractmethod
    async def add_project_member(self, project: str, role: str, member: str) -> None:
        ...

    @abc.abstractmethod
    async def bind_workload_identity(self, project: str, email: str, member: str) -> None:
        ...

    @abc.abstractmethod
    async def create_hmac_key(self, project: str, email: str) -> Optional[KeyPair]:
        """Create an HMAC key; ``None`` when the account already holds one."""
        ...


class ScalewayIam(Protocol):
    @abc.abstractmethod
    async def create_application(self, name: str, description: str) -> str:
        ...

    @abc.abstractmethod
    async def create_api_key(self, application_id: str, project_id: str, description: str) -> Optional[KeyPair]:
        """Create an API key; ``None`` when the application already holds one."""
        ...

    @abc.abstractmethod
    async def create_policy(
        self, name: str, description: str, application_id: str, rules: Sequence[dict[str, Any]]
    ) -> str:
        ...


class GitLabApi(Protocol):
    @abc.abstractmethod
    async def create_group_access_token(self, group: str, name: str, scopes: Sequence[str]) -> Optional[str]:
        ...


class TailscaleApi(Protocol):
    @abc.abstractmethod
    async def create_oauth_client(self, description: str, scopes: Sequence[str]) -> Optional[KeyPair]:
        ...


class GitHubApi(Protocol):
    @abc.abstractmethod
    async def get_repository(self, owner: str, name: str) -> Optional[dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def create_repository(self, owner: str, settings: dict[str, Any]) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    async def update_repository(self, owner: str, name: str, settings: dict[str, Any]) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    async def replace_topics(self, owner: str, name: str, topics: Sequence[str]) -> None:
        ...

    @abc.abstractmethod
    async def configure_pages(self, owner: str, name: str, branch: str) -> None:
        ...

    @abc.abstractmethod
    async def upsert_ruleset(self, owner: str, name: str, ruleset: dict[str, Any]) -> None:
        ...

    @abc.abstractmethod
    async def set_actions_variable(self, owner: str, name: str, variable: str, value: str) -> None:
        ...

    @abc.abstractmethod
    async def delete_repository(self, owner: str, name: str) -> None:
        ...


class Provider(Protocol):
    @property
    @abc.abstractmethod
    def name(self) -> str:
        ...

    @abc.abstractmethod
    async def configure(
        self,
        context: RunContext,
        repositories: Sequence[RepositoryDeclaration],
        mounts: Mapping[str, str],
    ) -> ProviderReport:
        ...


class CloudProvider(abc.ABC, Generic[HandleT]):
    """Grouping, federation barrier and per-repository fan-out for one cloud.

    Subclasses supply the provider policy, the request selector, the
    federated identity factory and the per-repository provisioning step.
    No service identity is provisioned before every federated identity of
    the pass exists.
    """

    name: str = "cloud"

    @abc.abstractmethod
    def policy(self) -> ProviderPolicy:
        ...

    @abc.abstractmethod
    def select(self, repository: RepositoryDeclaration) -> Optional[CloudAccess]:
        ...

    @abc.abstractmethod
    async def federate(self, context: RunContext, target: str) -> HandleT:
        ...

    @abc.abstractmethod
    async def provision(
        self,
        context: RunContext,
        request: ResolvedRequest,
        federation: FederationDeduplicator[HandleT],
        mount: Optional[str],
    ) -> None:
        ...

    async def prepare(self, context: RunContext, grouping: GroupingResult) -> None:
        """Runs once before the federation barrier."""

    def federation_targets(self, grouping: GroupingResult) -> list[str]:
        return grouping.targets

    async def configure(
        self,
        context: RunContext,
        repositories: Sequence[RepositoryDeclaration],
        mounts: Mapping[str, str],
    ) -> ProviderReport:
        policy = self.policy()
        grouping = group_repositories(repositories, policy, self.select)
        report = ProviderReport(provider=self.name, allowed=sorted(policy.allowed), grouping=grouping)

        with TRACER.start_as_current_span(f"repoaccess.provider.{self.name}") as span:
            span.set_attribute("repoaccess.provider", self.name)
            span.set_attribute("repoaccess.accepted", len(grouping.requests))
            span.set_attribute("repoaccess.rejected", len(grouping.rejected))
            if not grouping.requests:
                return report

            federation: FederationDeduplicator[HandleT] = FederationDeduplicator(
                self.name, lambda target: self.federate(context, target)
            )
            try:
                await self.prepare(context, grouping)
                await federation.ensure_all(self.federation_targets(grouping))
            except ProvisioningError as exc:
                report.aborted = str(exc)
                span.set_attribute("repoaccess.aborted", True)
                LOGGER.error(str(exc), provider=self.name)
                return report

            requests = list(grouping.requests.values())
            results = await asyncio.gather(
                *(self.provision(context, request, federation, mounts.get(request.name)) for request in requests),
                return_exceptions=True,
            )
            for request, result in zip(requests, results):
                if isinstance(result, BaseException):
                    report.failed[request.name] = str(result)
                    LOGGER.error(
                        format_event(self.name, "repository", "error provisioning repository", request.name),
                        error=str(result),
                        target=request.target,
                    )
                    continue
                report.record(request.name, request.targets)
            span.set_attribute("repoaccess.failed", len(report.failed))
        return report


class IntegrationProvider(abc.ABC):
    """Per-repository integration with no shared target or federation step."""

    name: str = "integration"
    output_key: str = "repositories"

    @abc.abstractmethod
    def eligible(self, repository: RepositoryDeclaration) -> bool:
        ...

    @abc.abstractmethod
    async def provision(self, context: RunContext, repository: RepositoryDeclaration, mount: Optional[str]) -> None:
        ...

    async def configure(
        self,
        context: RunContext,
        repositories: Sequence[RepositoryDeclaration],
        mounts: Mapping[str, str],
    ) -> ProviderReport:
        report = ProviderReport(provider=self.name)
        selected = [repository for repository in repositories if self.eligible(repository)]
        provisioned: list[str] = []

        with TRACER.start_as_current_span(f"repoaccess.provider.{self.name}") as span:
            span.set_attribute("repoaccess.provider", self.name)
            span.set_attribute("repoaccess.accepted", len(selected))
            results = await asyncio.gather(
                *(self.provision(context, repository, mounts.get(repository.name)) for repository in selected),
                return_exceptions=True,
            )
            for repository, result in zip(selected, results):
                if isinstance(result, BaseException):
                    report.failed[repository.name] = str(result)
                    LOGGER.error(
                        format_event(self.name, "repository", "error provisioning repository", repository.name),
                        error=str(result),
                    )
                    continue
                provisioned.append(repository.name)
            span.set_attribute("repoaccess.failed", len(report.failed))

        report.extra[self.output_key] = provisioned
        return report
