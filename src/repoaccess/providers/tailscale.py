"""Tailscale OAuth clients for repositories joining the tailnet from CI."""

from __future__ import annotations

from typing import Optional

import structlog

from ..common.context import RunContext
from ..common.errors import IdentityError, format_event
from ..common.naming import budget
from ..common.schemas import RepositoryDeclaration
from ..core.publication import SecretPublisher
from .base import IntegrationProvider, TailscaleApi

LOGGER = structlog.get_logger("repoaccess.providers.tailscale")

OAUTH_SCOPES = ("all",)


class TailscaleProvider(IntegrationProvider):
    name = "tailscale"
    output_key = "clients"

    def __init__(self, api: TailscaleApi, publisher: SecretPublisher) -> None:
        self._api = api
        self._publisher = publisher

    def eligible(self, repository: RepositoryDeclaration) -> bool:
        return repository.access_permissions.tailscale

    async def provision(self, context: RunContext, repository: RepositoryDeclaration, mount: Optional[str]) -> None:
        description = budget("tailscale-description").name(repository.name)
        try:
            client = await self._api.create_oauth_client(description, OAUTH_SCOPES)
        except Exception as exc:
            LOGGER.error(
                format_event(self.name, "configure", "error creating Tailscale OAuth client", repository.name),
                error=str(exc),
            )
            raise IdentityError(
                self.name, "configure", f"error creating Tailscale OAuth client ({exc})", repository=repository.name
            ) from exc

        if client is None:
            LOGGER.info(format_event(self.name, "configure", "OAuth client already exists", repository.name))
            return
        await self._publisher.publish(
            mount,
            "tailscale",
            {"oauth_client_id": client.access_key, "oauth_secret": client.secret_key},
            provider=self.name,
        )
