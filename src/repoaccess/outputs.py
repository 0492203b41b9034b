"""The outputs document published at the end of a run."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from .common.schemas import GoogleAccess, RepositoryDeclaration
from .core.grouping import Outcome, ResolvedRequest
from .providers.base import ProviderReport
from .providers.gitlab import gitlab_enabled

CLOUD_PROVIDERS = ("aws", "google", "scaleway")


def _accepted(report: Optional[ProviderReport], repository: str) -> Optional[ResolvedRequest]:
    if report is None or report.grouping is None:
        return None
    if report.grouping.outcome(repository) is not Outcome.ACCEPTED:
        return None
    return report.grouping.requests[repository]


def repository_flags(
    repository: RepositoryDeclaration,
    reports: Mapping[str, ProviderReport],
    allow_hmac_keys: bool = False,
) -> dict[str, bool]:
    """Integration flags derived from the declaration and the grouping outcomes, not from live state."""

    google = _accepted(reports.get("google"), repository.name)
    hmac_key = google is not None and isinstance(google.request, GoogleAccess) and google.request.hmac_key
    return {
        "gitlab": gitlab_enabled(repository),
        "google": google is not None,
        "gcs": allow_hmac_keys and hmac_key,
        "aws": _accepted(reports.get("aws"), repository.name) is not None,
        "vault": repository.vault_enabled,
        "tailscale": repository.access_permissions.tailscale,
        "managed": repository.manage_lifecycle,
    }


def _extra(report: Optional[ProviderReport], key: str) -> list[str]:
    if report is None:
        return []
    return sorted(report.extra.get(key, []))


def build_outputs(
    repositories: Sequence[RepositoryDeclaration],
    reports: Mapping[str, ProviderReport],
    allow_hmac_keys: bool = False,
) -> dict[str, Any]:
    outputs: dict[str, Any] = {}
    for provider in CLOUD_PROVIDERS:
        report = reports.get(provider)
        outputs[provider] = {
            "allowed": sorted(report.allowed) if report else [],
            "configured": {target: list(names) for target, names in sorted(report.configured.items())}
            if report
            else {},
        }
    outputs["gitlab"] = {"tokens": _extra(reports.get("gitlab"), "tokens")}
    outputs["tailscale"] = {"clients": _extra(reports.get("tailscale"), "clients")}
    outputs["vault"] = {"projects": _extra(reports.get("vault"), "projects")}
    outputs["repositories"] = {
        repository.name: repository_flags(repository, reports, allow_hmac_keys) for repository in repositories
    }
    return outputs
