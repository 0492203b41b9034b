"""Run orchestration across GitHub, Vault and the access providers.

Order of a run:

1. the unmanaged repository guard (fatal);
2. GitHub repositories and rulesets, then pruning of undeclared repositories;
3. Vault stores, which produce the mount every secret record lands in;
4. AWS, Google, Scaleway, GitLab and Tailscale concurrently. A provider that
   aborts never cancels the others.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Sequence

import structlog
from opentelemetry import trace

from .common.context import RunContext
from .common.errors import format_event
from .common.schemas import RepositoryDeclaration, StackConfig
from .core.grouping import ValidationReport
from .core.publication import SecretPublisher
from .outputs import build_outputs
from .providers.aws import AwsProvider
from .providers.base import (
    AwsIam,
    GitHubApi,
    GitLabApi,
    GoogleIam,
    ProviderReport,
    ScalewayIam,
    SecretStore,
    TailscaleApi,
)
from .providers.github import GitHubProvider
from .providers.gitlab import GitLabProvider
from .providers.google import GoogleProvider
from .providers.scaleway import ScalewayProvider
from .providers.tailscale import TailscaleProvider
from .providers.vault import VaultProvider

LOGGER = structlog.get_logger("repoaccess.orchestrator")
TRACER = trace.get_tracer("repoaccess.orchestrator")


@dataclass
class Backends:
    """Collaborators used by one run."""

    secrets: SecretStore
    github: GitHubApi
    aws: AwsIam
    google: GoogleIam
    scaleway: ScalewayIam
    gitlab: GitLabApi
    tailscale: TailscaleApi


@dataclass
class RunResult:
    outputs: dict[str, Any]
    reports: dict[str, ProviderReport] = field(default_factory=dict)
    validation: ValidationReport = field(default_factory=ValidationReport)
    deleted: list[str] = field(default_factory=list)

    @property
    def aborted(self) -> list[str]:
        return [name for name, report in self.reports.items() if report.aborted]

    @property
    def failed(self) -> dict[str, dict[str, str]]:
        return {name: dict(report.failed) for name, report in self.reports.items() if report.failed}

    def summary(self) -> dict[str, Any]:
        return {
            "aborted": {name: self.reports[name].aborted for name in self.aborted},
            "failed": self.failed,
            "rejected": self.validation.as_dict(),
            "deleted": self.deleted,
        }


class Orchestrator:
    def __init__(self, stack: StackConfig, backends: Backends) -> None:
        self._stack = stack
        self._backends = backends

    async def run(self, context: RunContext, repositories: Sequence[RepositoryDeclaration]) -> RunResult:
        backends = self._backends
        publisher = SecretPublisher(backends.secrets)
        github = GitHubProvider(backends.github)
        reports: dict[str, ProviderReport] = {}

        with TRACER.start_as_current_span("repoaccess.run") as span:
            span.set_attribute("repoaccess.environment", context.environment)
            span.set_attribute("repoaccess.repositories", len(repositories))

            github.check_unmanaged(context, repositories)
            reports["github"] = await github.configure(context, repositories)
            deleted = await github.prune(context, [repository.name for repository in repositories])

            stores = await VaultProvider(backends.secrets, backends.github, publisher).configure(context, repositories)
            reports["vault"] = stores.report

            providers = [
                AwsProvider(self._stack.aws, backends.aws, publisher),
                GoogleProvider(self._stack.google, backends.google, publisher),
                ScalewayProvider(self._stack.scaleway, backends.scaleway, publisher),
                GitLabProvider(backends.gitlab, publisher),
                TailscaleProvider(backends.tailscale, publisher),
            ]
            results = await asyncio.gather(
                *(provider.configure(context, repositories, stores.mounts) for provider in providers),
                return_exceptions=True,
            )

            validation = ValidationReport()
            for provider, result in zip(providers, results):
                if isinstance(result, BaseException):
                    LOGGER.error(
                        format_event(provider.name, "configure", "provider pass aborted"),
                        error=str(result),
                    )
                    result = ProviderReport(provider=provider.name, aborted=str(result))
                reports[provider.name] = result
                if result.grouping is not None:
                    validation.extend(result.grouping)

            outcome = RunResult(
                outputs=build_outputs(repositories, reports, self._stack.google.allow_hmac_keys),
                reports=reports,
                validation=validation,
                deleted=deleted,
            )
            span.set_attribute("repoaccess.aborted", len(outcome.aborted))
            span.set_attribute("repoaccess.secret_writes", publisher.writes)

        LOGGER.info(
            "Run finished",
            environment=context.environment,
            aborted=outcome.aborted,
            failed=sorted(outcome.failed),
            rejected=len(validation.rejected),
            secret_writes=publisher.writes,
        )
        return outcome
