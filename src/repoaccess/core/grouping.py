"""Grouping of repository access requests by provider target.

For one provider, :func:`group_repositories` walks every repository
declaration in order, validates its access request against the provider's
allow-list and produces two views of the accepted requests:

* ``by_target``: every referenced target (primary or linked) mapped to the
  repositories that need an identity or binding inside it;
* ``requests``: every accepted repository mapped to its resolved request.

Requests naming an unknown target are rejected as a whole and recorded as a
:class:`ValidationIssue`; nothing is provisioned for them in that provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Mapping, Optional

import structlog

from ..common.errors import format_event
from ..common.schemas import CloudAccess, GoogleAccess, LinkedAccess, RepositoryDeclaration
from .permissions import resolve_permissions

LOGGER = structlog.get_logger("repoaccess.core.grouping")

RequestSelector = Callable[[RepositoryDeclaration], Optional[CloudAccess]]


class Outcome(str, Enum):
    ACCEPTED = "accepted"
    ABSENT = "absent"
    UNKNOWN_TARGET = "unknown-target"
    UNKNOWN_LINKED_TARGET = "unknown-linked-target"

    @property
    def rejected(self) -> bool:
        return self in (Outcome.UNKNOWN_TARGET, Outcome.UNKNOWN_LINKED_TARGET)


@dataclass(frozen=True)
class ProviderPolicy:
    """Provider-wide settings the grouping needs."""

    name: str
    allowed: tuple[str, ...]
    default_permissions: tuple[str, ...] = ()
    default_region: Optional[str] = None
    default_zone: Optional[str] = None
    default_services: tuple[str, ...] = ()

    def allows(self, target: str) -> bool:
        return target in self.allowed


@dataclass(frozen=True)
class ValidationIssue:
    provider: str
    repository: str
    outcome: Outcome
    target: Optional[str] = None

    @property
    def message(self) -> str:
        if self.outcome is Outcome.ABSENT:
            return format_event(self.provider, "validation", "no target requested", self.repository)
        kind = "linked target" if self.outcome is Outcome.UNKNOWN_LINKED_TARGET else "target"
        return format_event(
            self.provider,
            "validation",
            f"repository {self.repository} references an unconfigured {kind}",
            self.target,
        )


@dataclass(frozen=True)
class ResolvedRequest:
    """An accepted access request with defaults applied."""

    repository: RepositoryDeclaration
    request: CloudAccess
    target: str
    region: Optional[str] = None
    zone: Optional[str] = None
    linked: Mapping[str, LinkedAccess] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.repository.name

    @property
    def targets(self) -> list[str]:
        return [self.target, *(target for target in self.linked if target != self.target)]

    def is_full_in(self, target: str) -> bool:
        if target == self.target:
            return True
        linked = self.linked.get(target)
        return linked is not None and linked.is_full

    def permissions_for(self, target: str, defaults: Iterable[str]) -> list[str]:
        is_primary = target == self.target
        return resolve_permissions(
            self.request.iam_permissions,
            list(defaults),
            is_primary,
            None if is_primary else self.linked.get(target),
        )

    def effective_permissions(self, defaults: Iterable[str]) -> dict[str, list[str]]:
        defaults = list(defaults)
        return {target: self.permissions_for(target, defaults) for target in self.targets}


@dataclass
class GroupingResult:
    provider: str
    by_target: dict[str, list[str]] = field(default_factory=dict)
    requests: dict[str, ResolvedRequest] = field(default_factory=dict)
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def targets(self) -> list[str]:
        return list(self.by_target)

    @property
    def rejected(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.outcome.rejected]

    def outcome(self, repository: str) -> Outcome:
        if repository in self.requests:
            return Outcome.ACCEPTED
        for issue in self.issues:
            if issue.repository == repository:
                return issue.outcome
        return Outcome.ABSENT

    def services_by_target(self, default_services: Iterable[str]) -> dict[str, list[str]]:
        """Aggregate the services each target needs, without duplicates.

        A repository contributes its own requested services to targets where
        it holds full access and only the defaults elsewhere.
        """

        defaults = list(default_services)
        services: dict[str, list[str]] = {}
        for target, repositories in self.by_target.items():
            collected: list[str] = []
            for repository in repositories:
                request = self.requests[repository]
                wanted = list(defaults)
                if request.is_full_in(target) and isinstance(request.request, GoogleAccess):
                    wanted = [*request.request.enabled_services, *defaults]
                for service in wanted:
                    if service not in collected:
                        collected.append(service)
            services[target] = collected
        return services


def group_repositories(
    repositories: Iterable[RepositoryDeclaration],
    policy: ProviderPolicy,
    select: RequestSelector,
) -> GroupingResult:
    """Partition repositories by the targets they request from one provider."""

    result = GroupingResult(provider=policy.name)
    for repository in repositories:
        request = select(repository)
        if request is None or not request.target:
            issue = ValidationIssue(policy.name, repository.name, Outcome.ABSENT)
            result.issues.append(issue)
            LOGGER.debug(issue.message)
            continue

        issue = _validate(repository, request, policy)
        if issue is not None:
            result.issues.append(issue)
            LOGGER.error(issue.message, repository=repository.name, target=issue.target)
            continue

        resolved = ResolvedRequest(
            repository=repository,
            request=request,
            target=request.target,
            region=request.region or policy.default_region,
            zone=getattr(request, "zone", None) or policy.default_zone,
            linked=dict(request.linked),
        )
        result.requests[repository.name] = resolved
        for target in resolved.targets:
            result.by_target.setdefault(target, []).append(repository.name)
    return result


def _validate(
    repository: RepositoryDeclaration, request: CloudAccess, policy: ProviderPolicy
) -> Optional[ValidationIssue]:
    if not policy.allows(request.target):
        return ValidationIssue(policy.name, repository.name, Outcome.UNKNOWN_TARGET, request.target)
    for linked in request.linked:
        if not policy.allows(linked):
            return ValidationIssue(policy.name, repository.name, Outcome.UNKNOWN_LINKED_TARGET, linked)
    return None


@dataclass
class ValidationReport:
    """Validation outcomes of every provider, kept for inspection after a run."""

    issues: list[ValidationIssue] = field(default_factory=list)

    def extend(self, grouping: GroupingResult) -> None:
        self.issues.extend(grouping.issues)

    @property
    def rejected(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.outcome.rejected]

    def for_provider(self, provider: str) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.provider == provider]

    def as_dict(self) -> list[dict[str, Optional[str]]]:
        return [
            {
                "provider": issue.provider,
                "repository": issue.repository,
                "outcome": issue.outcome.value,
                "target": issue.target,
            }
            for issue in self.rejected
        ]
