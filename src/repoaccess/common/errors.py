"""Exception taxonomy shared by the registry, providers and backends."""

from __future__ import annotations

from typing import Optional


class RepoAccessError(Exception):
    """Base class for every error raised by repoaccess."""


class ConfigurationError(RepoAccessError):
    """Raised when the stack configuration or repository declarations are invalid."""


class StateError(RepoAccessError):
    """Raised when the previous run state cannot be resolved."""


class UnmanagedRepositoryError(RepoAccessError):
    """Raised when an unmanaged repository has not been imported yet."""

    def __init__(self, repository: str, owner: str) -> None:
        super().__init__(
            f"repository '{repository}' is not imported yet! Check that {owner}/{repository} "
            'exists and re-run with IGNORE_UNMANAGED_REPOSITORIES="true" to record it'
        )
        self.repository = repository
        self.owner = owner


class BackendError(RepoAccessError):
    """Raised by a collaborator backend when a remote call fails."""

    def __init__(self, service: str, operation: str, detail: str) -> None:
        super().__init__(f"{service} {operation} failed: {detail}")
        self.service = service
        self.operation = operation
        self.detail = detail


class ProvisioningError(RepoAccessError):
    """Raised when a resource could not be provisioned.

    The string form follows the ``[provider][stage] message: target`` shape
    used by every log line, so the error can be surfaced verbatim.
    """

    def __init__(
        self,
        provider: str,
        stage: str,
        message: str,
        target: Optional[str] = None,
        repository: Optional[str] = None,
    ) -> None:
        self.provider = provider
        self.stage = stage
        self.message = message
        self.target = target
        self.repository = repository
        super().__init__(format_event(provider, stage, message, target))


class FederationError(ProvisioningError):
    """Federated identity creation failed; aborts the whole provider pass."""


class IdentityError(ProvisioningError):
    """Service identity provisioning failed for a single repository."""


class PublicationError(ProvisioningError):
    """Writing a secret record into a repository mount failed."""


def format_event(provider: str, stage: str, message: str, target: Optional[str] = None) -> str:
    prefix = f"[{provider}][{stage}] {message}"
    if target:
        return f"{prefix}: {target}"
    return prefix
