"""Provider-independent grouping, federation, permission and publication logic."""

from .federation import FederationDeduplicator
from .grouping import (
    GroupingResult,
    Outcome,
    ProviderPolicy,
    ResolvedRequest,
    ValidationIssue,
    ValidationReport,
    group_repositories,
)
from .permissions import resolve_permissions
from .publication import SecretPublisher

__all__ = [
    "FederationDeduplicator",
    "GroupingResult",
    "Outcome",
    "ProviderPolicy",
    "ResolvedRequest",
    "SecretPublisher",
    "ValidationIssue",
    "ValidationReport",
    "group_repositories",
    "resolve_permissions",
]
