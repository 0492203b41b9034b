from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from repoaccess.backends.memory import MemoryBackends
from repoaccess.common.context import RunContext
from repoaccess.common.schemas import RepositoryDeclaration, StackConfig
from repoaccess.core.publication import SecretPublisher

OWNER = "acme"
AWS_ACCOUNT = "111111111111"


def stack_document() -> dict[str, Any]:
    return {
        "repositories": {"owner": OWNER, "subscription": "team"},
        "aws": {"defaultRegion": "eu-west-1", "account": {AWS_ACCOUNT: {}, "222222222222": {}}},
        "google": {"defaultRegion": "europe-west1", "projects": ["proj-a", "proj-b"], "allowHmacKeys": True},
        "scaleway": {
            "organizationId": "org-1",
            "defaultRegion": "fr-par",
            "defaultZone": "fr-par-1",
            "projects": {"main": "scw-project-main", "data": "scw-project-data"},
        },
        "vault": {"enabled": True, "address": "https://vault.example.com"},
    }


@pytest.fixture
def stack_data() -> dict[str, Any]:
    return stack_document()


@pytest.fixture
def stack(stack_data: dict[str, Any]) -> StackConfig:
    return StackConfig.model_validate(stack_data)


@pytest.fixture
def make_repository() -> Callable[..., RepositoryDeclaration]:
    def _make(name: str, **fields: Any) -> RepositoryDeclaration:
        return RepositoryDeclaration.model_validate({"name": name, **fields})

    return _make


@pytest.fixture
def context() -> RunContext:
    return RunContext(
        environment="test",
        owner=OWNER,
        subscription="team",
        vault_connected=True,
        vault_address="https://vault.example.com",
    )


@pytest.fixture
def memory() -> MemoryBackends:
    return MemoryBackends()


@pytest.fixture
def publisher(memory: MemoryBackends) -> SecretPublisher:
    return SecretPublisher(memory.secrets)


@pytest.fixture
def write_yaml() -> Callable[[Path, Any], Path]:
    def _write(path: Path, document: Any) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(document), encoding="utf-8")
        return path

    return _write
