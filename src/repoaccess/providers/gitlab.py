"""GitLab group access tokens for repositories mirrored to GitLab."""

from __future__ import annotations

from typing import Optional

import structlog

from ..common.context import RunContext
from ..common.errors import IdentityError, format_event
from ..common.naming import budget
from ..common.schemas import RepositoryDeclaration
from ..core.publication import SecretPublisher
from .base import GitLabApi, IntegrationProvider

LOGGER = structlog.get_logger("repoaccess.providers.gitlab")


def gitlab_enabled(repository: RepositoryDeclaration) -> bool:
    gitlab = repository.access_permissions.gitlab
    return gitlab is not None and len(gitlab.scopes) > 0


class GitLabProvider(IntegrationProvider):
    name = "gitlab"
    output_key = "tokens"

    def __init__(self, api: GitLabApi, publisher: SecretPublisher) -> None:
        self._api = api
        self._publisher = publisher

    def eligible(self, repository: RepositoryDeclaration) -> bool:
        return gitlab_enabled(repository)

    async def provision(self, context: RunContext, repository: RepositoryDeclaration, mount: Optional[str]) -> None:
        gitlab = repository.access_permissions.gitlab
        token_name = budget("gitlab-token").name(repository.name)
        try:
            token = await self._api.create_group_access_token(gitlab.group, token_name, gitlab.scopes)
        except Exception as exc:
            LOGGER.error(
                format_event(self.name, "configure", "error creating GitLab access token", repository.name),
                error=str(exc),
            )
            raise IdentityError(
                self.name, "configure", f"error creating GitLab access token ({exc})", gitlab.group, repository.name
            ) from exc

        if token is None:
            LOGGER.info(format_event(self.name, "configure", "access token already exists", repository.name))
            return
        await self._publisher.publish(mount, "gitlab", {"token": token}, provider=self.name)
