"""Immutable per-run context threaded through every component."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .schemas import StackConfig
from .settings import RunSettings


@dataclass(frozen=True)
class RunContext:
    environment: str
    owner: str
    subscription: Optional[str] = None
    allow_repository_deletion: bool = False
    ignore_unmanaged_repositories: bool = False
    vault_connected: bool = False
    vault_address: Optional[str] = None
    previous_outputs: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        settings: RunSettings,
        stack: StackConfig,
        previous_outputs: Optional[Mapping[str, Any]] = None,
    ) -> "RunContext":
        token = settings.vault_token.get_secret_value() if settings.vault_token else ""
        return cls(
            environment=settings.environment,
            owner=stack.repositories.owner,
            subscription=stack.repositories.subscription,
            allow_repository_deletion=settings.allow_repository_deletion,
            ignore_unmanaged_repositories=settings.ignore_unmanaged_repositories,
            vault_connected=stack.vault.enabled and bool(token),
            vault_address=stack.vault.address,
            previous_outputs=dict(previous_outputs or {}),
        )

    @property
    def has_subscription(self) -> bool:
        return self.subscription is not None and self.subscription != "none"

    @property
    def labels(self) -> dict[str, str]:
        return {"environment": self.environment}

    def full_name(self, repository: str) -> str:
        return f"{self.owner}/{repository}"

    def previous_repositories(self) -> dict[str, dict[str, bool]]:
        repositories = self.previous_outputs.get("repositories") or {}
        return {name: dict(flags or {}) for name, flags in repositories.items()}
