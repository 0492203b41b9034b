"""Vault stores: one KV v2 mount, ACL policy and JWT role per repository.

The mount created here is where every other provider publishes its secret
records, so this pass runs before the cloud providers.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence

import structlog
from opentelemetry import trace

from ..common.context import RunContext
from ..common.errors import IdentityError, PublicationError, format_event
from ..common.schemas import RepositoryDeclaration, VaultMountAccess
from ..core.publication import SecretPublisher
from .base import GitHubApi, ProviderReport, SecretStore

LOGGER = structlog.get_logger("repoaccess.providers.vault")
TRACER = trace.get_tracer("repoaccess.providers.vault")

JWT_BACKEND = "github"
TOKEN_TTL_SECONDS = 60 * 60


def mount_path(repository: str) -> str:
    return f"github-{repository}"


def role_name(repository: str) -> str:
    return f"github-{repository}"


def render_policy(repository: str, additional_mounts: Sequence[VaultMountAccess]) -> str:
    blocks = [f'path "{mount_path(repository)}/*" {{\n  capabilities = ["read", "list"]\n}}']
    for mount in additional_mounts:
        capabilities = ", ".join(f'"{permission}"' for permission in mount.permissions)
        blocks.append(f'path "{mount.path}/*" {{\n  capabilities = [{capabilities}]\n}}')
    return "\n\n".join(blocks) + "\n"


def jwt_role(owner: str, repository: str) -> dict:
    return {
        "role_type": "jwt",
        "token_policies": [role_name(repository)],
        "token_ttl": TOKEN_TTL_SECONDS,
        "bound_audiences": [f"https://github.com/{owner}"],
        "user_claim": "repository",
        "bound_claims": {"repository": f"{owner}/{repository}"},
    }


@dataclass
class VaultStores:
    """Result of the Vault pass: mount per repository plus the pass report."""

    mounts: dict[str, str] = field(default_factory=dict)
    report: ProviderReport = field(default_factory=lambda: ProviderReport(provider="vault"))


class VaultProvider:
    name = "vault"

    def __init__(self, store: SecretStore, github: GitHubApi, publisher: SecretPublisher) -> None:
        self._store = store
        self._github = github
        self._publisher = publisher

    def eligible(self, repository: RepositoryDeclaration) -> bool:
        return repository.vault_enabled

    async def configure(self, context: RunContext, repositories: Sequence[RepositoryDeclaration]) -> VaultStores:
        result = VaultStores()
        if not context.vault_connected:
            LOGGER.info(format_event(self.name, "stores", "no Vault connection, skipping stores"))
            result.report.extra["projects"] = []
            return result

        selected = [repository for repository in repositories if self.eligible(repository)]
        with TRACER.start_as_current_span("repoaccess.provider.vault") as span:
            span.set_attribute("repoaccess.accepted", len(selected))
            try:
                await self._create_additional_mounts(selected)
            except IdentityError as exc:
                result.report.aborted = str(exc)
                result.report.extra["projects"] = []
                return result

            results = await asyncio.gather(
                *(self._configure_repository(context, repository, result.report) for repository in selected),
                return_exceptions=True,
            )
            for repository, outcome in zip(selected, results):
                if isinstance(outcome, BaseException):
                    result.report.failed[repository.name] = str(outcome)
                    LOGGER.error(
                        format_event(self.name, "stores", "error configuring Vault store", repository.name),
                        error=str(outcome),
                    )
                    continue
                result.mounts[repository.name] = outcome
            span.set_attribute("repoaccess.failed", len(result.report.failed))

        result.report.extra["projects"] = [name for name in result.mounts if name not in result.report.failed]
        return result

    async def _create_additional_mounts(self, repositories: Sequence[RepositoryDeclaration]) -> None:
        paths: list[str] = []
        for repository in repositories:
            vault = repository.access_permissions.vault
            for mount in vault.additional_mounts if vault else []:
                if mount.create and mount.path not in paths:
                    paths.append(mount.path)
        for path in paths:
            try:
                await self._store.create_mount(path, f"Secrets for: {path}")
            except Exception as exc:
                LOGGER.error(format_event(self.name, "stores", "error creating additional mount", path), error=str(exc))
                raise IdentityError(self.name, "stores", f"error creating additional mount ({exc})", path) from exc

    async def _configure_repository(
        self, context: RunContext, repository: RepositoryDeclaration, report: ProviderReport
    ) -> str:
        vault = repository.access_permissions.vault
        additional = vault.additional_mounts if vault else []
        name = repository.name
        try:
            mount = await self._store.create_mount(
                mount_path(name), f"GitHub repository: {context.full_name(name)}"
            )
            await self._store.write_policy(role_name(name), render_policy(name, additional))
            await self._store.write_jwt_role(JWT_BACKEND, role_name(name), jwt_role(context.owner, name))
        except Exception as exc:
            message = f"error creating Vault authentication ({exc})"
            raise IdentityError(self.name, "auth", message, repository=name) from exc

        # the mount stays usable by other providers even when exposing it fails
        try:
            await self._expose(context, repository, mount)
        except (PublicationError, IdentityError) as exc:
            report.failed[name] = str(exc)
            LOGGER.error(format_event(self.name, "auth", "error exposing Vault store", name), error=str(exc))
        return mount

    async def _expose(self, context: RunContext, repository: RepositoryDeclaration, mount: str) -> None:
        address = self.address_for(context, repository) or ""
        name = repository.name
        await self._publisher.publish(
            mount,
            "vault",
            {"address": address, "role": role_name(name), "path": JWT_BACKEND},
            provider=self.name,
        )
        variables = {"VAULT_ADDR": address, "VAULT_ROLE": role_name(name), "VAULT_PATH": JWT_BACKEND}
        try:
            for variable, value in variables.items():
                await self._github.set_actions_variable(context.owner, name, variable, value)
        except Exception as exc:
            raise IdentityError(self.name, "auth", f"error exposing Vault variables ({exc})", repository=name) from exc

    @staticmethod
    def address_for(context: RunContext, repository: RepositoryDeclaration) -> Optional[str]:
        vault = repository.access_permissions.vault
        return (vault.address if vault else None) or context.vault_address
