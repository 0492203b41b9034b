"""Assemble the live backends for an ``apply`` run from settings and stack configuration."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

import httpx
import structlog

from ..common.errors import BackendError, ConfigurationError
from ..common.schemas import StackConfig
from ..common.settings import RunSettings
from ..orchestrator import Backends
from .aws import BotoAwsIam
from .github import GitHubAppAuth, GitHubRestApi
from .gitlab import GitLabRestApi
from .google import GoogleCloudIam
from .scaleway import ScalewayIamApi
from .tailscale import TailscaleRestApi
from .vault import VaultSecretStore

LOGGER = structlog.get_logger("repoaccess.backends.live")


class UnconfiguredBackend:
    """Stands in for a service without credentials; every call fails with a :class:`BackendError`.

    Only repositories that request the service are affected: the provider pass
    records the failure and the rest of the run proceeds.
    """

    def __init__(self, service: str, reason: str) -> None:
        self.service = service
        self.reason = reason

    def __getattr__(self, operation: str) -> Callable[..., Awaitable[Any]]:
        if operation.startswith("_"):
            raise AttributeError(operation)

        async def _fail(*args: Any, **kwargs: Any) -> Any:
            raise BackendError(self.service, operation, self.reason)

        return _fail


def _secret(value) -> str:
    return value.get_secret_value() if value is not None else ""


def github_backend(settings: RunSettings, client: httpx.AsyncClient) -> GitHubRestApi:
    if settings.has_github_app:
        auth = GitHubAppAuth(
            client,
            settings.github_app_id,
            _secret(settings.github_app_private_key),
            settings.github_app_installation_id,
        )
        return GitHubRestApi(client, app_auth=auth)
    if settings.github_token is not None:
        return GitHubRestApi(client, token=_secret(settings.github_token))
    raise ConfigurationError("GitHub credentials are required: set GITHUB_TOKEN or the GITHUB_APP_* variables")


def build_live_backends(settings: RunSettings, stack: StackConfig, client: httpx.AsyncClient) -> Backends:
    github = github_backend(settings, client)

    if stack.vault.enabled and stack.vault.address and settings.vault_token is not None:
        secrets: Any = VaultSecretStore(client, stack.vault.address, _secret(settings.vault_token))
    else:
        secrets = UnconfiguredBackend("vault", "Vault is not connected")

    if settings.scaleway_secret_key is not None and stack.scaleway.organization_id:
        scaleway: Any = ScalewayIamApi(client, _secret(settings.scaleway_secret_key), stack.scaleway.organization_id)
    else:
        scaleway = UnconfiguredBackend("scaleway", "SCW_SECRET_KEY or the organization id is not set")

    if settings.gitlab_token is not None:
        gitlab: Any = GitLabRestApi(client, str(settings.gitlab_url), _secret(settings.gitlab_token))
    else:
        gitlab = UnconfiguredBackend("gitlab", "GITLAB_TOKEN is not set")

    if settings.tailscale_api_key is not None:
        tailscale: Any = TailscaleRestApi(client, _secret(settings.tailscale_api_key), settings.tailscale_tailnet)
    else:
        tailscale = UnconfiguredBackend("tailscale", "TAILSCALE_API_KEY is not set")

    LOGGER.debug(
        "Live backends assembled",
        vault=not isinstance(secrets, UnconfiguredBackend),
        scaleway=not isinstance(scaleway, UnconfiguredBackend),
        gitlab=not isinstance(gitlab, UnconfiguredBackend),
        tailscale=not isinstance(tailscale, UnconfiguredBackend),
    )
    return Backends(
        secrets=secrets,
        github=github,
        aws=BotoAwsIam(stack.aws),
        google=GoogleCloudIam(client, settings.google_scopes),
        scaleway=scaleway,
        gitlab=gitlab,
        tailscale=tailscale,
    )
