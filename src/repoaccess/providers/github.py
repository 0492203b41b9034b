"""GitHub repositories, branch rulesets and lifecycle guards."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import structlog
from opentelemetry import trace

from ..common.context import RunContext
from ..common.errors import IdentityError, UnmanagedRepositoryError, format_event
from ..common.schemas import RepositoryDeclaration, RulesetConfig
from .base import GitHubApi, ProviderReport

LOGGER = structlog.get_logger("repoaccess.providers.github")
TRACER = trace.get_tracer("repoaccess.providers.github")

DEFAULT_BRANCH_PATTERN = "~DEFAULT_BRANCH"
REPOSITORY_ADMIN_ROLE_ID = 5
WIP_CHECK_CONTEXT = "WIP"


def repository_settings(repository: RepositoryDeclaration) -> dict[str, Any]:
    settings: dict[str, Any] = {
        "name": repository.name,
        "description": repository.description,
        "homepage": repository.homepage or "",
        "visibility": repository.visibility,
        "private": repository.is_private,
        "has_wiki": repository.enable_wiki,
        "has_discussions": repository.enable_discussions,
        "has_projects": repository.create_project,
        "has_issues": True,
    }
    return settings


def branch_ruleset(owner: str, repository: str, config: RulesetConfig) -> dict[str, Any]:
    rules: list[dict[str, Any]] = [{"type": "deletion"}]
    if config.restrict_creation:
        rules.append({"type": "creation"})
    if not config.allow_force_push:
        rules.append({"type": "non_fast_forward"})
    if config.require_signed_commits:
        rules.append({"type": "required_signatures"})
    rules.append(
        {
            "type": "pull_request",
            "parameters": {
                "required_approving_review_count": config.approving_review_count,
                "require_code_owner_review": config.require_code_owner_review,
                "require_last_push_approval": config.require_last_push_approval,
                "required_review_thread_resolution": config.require_conversation_resolution,
                "dismiss_stale_reviews_on_push": False,
            },
        }
    )

    checks = [{"context": check} for check in config.required_checks]
    if config.enable_wip_integration:
        checks.append({"context": WIP_CHECK_CONTEXT})
    if checks or config.require_updated_branch_before_merge:
        rules.append(
            {
                "type": "required_status_checks",
                "parameters": {
                    "strict_required_status_checks_policy": config.require_updated_branch_before_merge,
                    "required_status_checks": checks,
                },
            }
        )
    if config.enable_merge_queue:
        rules.append(
            {
                "type": "merge_queue",
                "parameters": {
                    "merge_method": "SQUASH",
                    "grouping_strategy": "ALLGREEN",
                    "max_entries_to_build": 5,
                    "min_entries_to_merge": 1,
                    "max_entries_to_merge": 5,
                    "min_entries_to_merge_wait_minutes": 5,
                    "check_response_timeout_minutes": 60,
                },
            }
        )

    bypass_actors: list[dict[str, Any]] = []
    if config.allow_bypass:
        bypass_actors.append(
            {"actor_id": REPOSITORY_ADMIN_ROLE_ID, "actor_type": "RepositoryRole", "bypass_mode": "always"}
        )
    for integration in config.allow_bypass_integrations:
        bypass_actors.append({"actor_id": integration, "actor_type": "Integration", "bypass_mode": "always"})

    return {
        "name": f"branch-{owner}-{repository}",
        "target": "branch",
        "enforcement": "active",
        "conditions": {"ref_name": {"include": [DEFAULT_BRANCH_PATTERN, *config.patterns], "exclude": []}},
        "rules": rules,
        "bypass_actors": bypass_actors,
    }


def ruleset_allowed(context: RunContext, repository: RepositoryDeclaration) -> bool:
    branch = repository.rulesets.branch if repository.rulesets else None
    if branch is None or not branch.enabled:
        return False
    return context.has_subscription or not repository.is_private


class GitHubProvider:
    name = "github"

    def __init__(self, api: GitHubApi) -> None:
        self._api = api

    def check_unmanaged(self, context: RunContext, repositories: Sequence[RepositoryDeclaration]) -> None:
        """Fail when an unmanaged repository was never recorded by a previous run."""

        if context.ignore_unmanaged_repositories:
            return
        known = context.previous_repositories()
        for repository in repositories:
            if not repository.manage_lifecycle and repository.name not in known:
                LOGGER.error(
                    format_event(self.name, "repository", "unmanaged repository is not imported", repository.name)
                )
                raise UnmanagedRepositoryError(repository.name, context.owner)

    async def configure(self, context: RunContext, repositories: Sequence[RepositoryDeclaration]) -> ProviderReport:
        report = ProviderReport(provider=self.name)
        with TRACER.start_as_current_span("repoaccess.provider.github") as span:
            span.set_attribute("repoaccess.accepted", len(repositories))
            results = await asyncio.gather(
                *(self._configure_repository(context, repository) for repository in repositories),
                return_exceptions=True,
            )
            configured = []
            for repository, result in zip(repositories, results):
                if isinstance(result, BaseException):
                    report.failed[repository.name] = str(result)
                    LOGGER.error(
                        format_event(self.name, "repository", "error creating GitHub repository", repository.name),
                        error=str(result),
                    )
                    continue
                configured.append(repository.name)
            span.set_attribute("repoaccess.failed", len(report.failed))
        report.extra["repositories"] = configured
        return report

    async def _configure_repository(self, context: RunContext, repository: RepositoryDeclaration) -> None:
        owner = context.owner
        name = repository.name
        try:
            existing = await self._api.get_repository(owner, name)
            if existing is None:
                if not repository.manage_lifecycle:
                    LOGGER.warning(format_event(self.name, "repository", "unmanaged repository not found", name))
                    return
                await self._api.create_repository(owner, repository_settings(repository))
                LOGGER.info(format_event(self.name, "repository", "repository created", context.full_name(name)))
            else:
                await self._api.update_repository(owner, name, repository_settings(repository))
            await self._api.replace_topics(owner, name, repository.topics)
            if repository.pages_branch:
                await self._api.configure_pages(owner, name, repository.pages_branch)
            if ruleset_allowed(context, repository):
                await self._api.upsert_ruleset(owner, name, branch_ruleset(owner, name, repository.rulesets.branch))
        except Exception as exc:
            message = f"error configuring repository ({exc})"
            raise IdentityError(self.name, "repository", message, repository=name) from exc

    async def prune(self, context: RunContext, declared: Sequence[str]) -> list[str]:
        """Delete previously managed repositories that are no longer declared."""

        stale = [
            name
            for name, flags in context.previous_repositories().items()
            if flags.get("managed") and name not in declared
        ]
        deleted: list[str] = []
        for name in stale:
            if not context.allow_repository_deletion:
                LOGGER.warning(
                    format_event(
                        self.name,
                        "repository",
                        "repository is no longer declared; set ALLOW_REPOSITORY_DELETION to delete it",
                        name,
                    )
                )
                continue
            await self._api.delete_repository(context.owner, name)
            LOGGER.warning(format_event(self.name, "repository", "repository deleted", context.full_name(name)))
            deleted.append(name)
        return deleted
