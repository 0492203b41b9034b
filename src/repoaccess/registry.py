"""Loading of the stack configuration and repository declarations."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

import structlog
import yaml
from pydantic import ValidationError

from .common.errors import ConfigurationError
from .common.schemas import RepositoryDeclaration, StackConfig

LOGGER = structlog.get_logger("repoaccess.registry")

REPOSITORY_SUFFIXES = {".yaml", ".yml"}


def _read_mapping(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"unable to read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return data


def load_stack_config(path: Path) -> StackConfig:
    if not path.exists():
        raise ConfigurationError(f"stack configuration not found at {path}")
    try:
        stack = StackConfig.model_validate(_read_mapping(path))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid stack configuration in {path}: {exc}") from exc
    LOGGER.info(
        "Loaded stack configuration",
        path=str(path),
        owner=stack.repositories.owner,
        aws_accounts=len(stack.aws.account),
        google_projects=len(stack.google.projects),
        scaleway_projects=len(stack.scaleway.projects),
    )
    return stack


class RepositoryRegistry:
    """Ordered, name-indexed collection of repository declarations."""

    def __init__(self, repositories: Iterable[RepositoryDeclaration]) -> None:
        self._repositories: list[RepositoryDeclaration] = []
        self._by_name: dict[str, RepositoryDeclaration] = {}
        for repository in repositories:
            if repository.name in self._by_name:
                raise ConfigurationError(f"repository '{repository.name}' is declared more than once")
            self._repositories.append(repository)
            self._by_name[repository.name] = repository

    @classmethod
    def from_directory(cls, directory: Path) -> "RepositoryRegistry":
        if not directory.is_dir():
            raise ConfigurationError(f"repository directory not found at {directory}")
        declarations = []
        for path in sorted(directory.iterdir()):
            if path.suffix not in REPOSITORY_SUFFIXES or not path.is_file():
                continue
            try:
                declarations.append(RepositoryDeclaration.model_validate(_read_mapping(path)))
            except ValidationError as exc:
                LOGGER.error("[repository] error parsing repository configuration file", path=str(path))
                raise ConfigurationError(f"invalid repository declaration in {path}: {exc}") from exc
        registry = cls(declarations)
        LOGGER.info("Loaded repository declarations", path=str(directory), repositories=len(registry))
        return registry

    def __iter__(self) -> Iterator[RepositoryDeclaration]:
        return iter(self._repositories)

    def __len__(self) -> int:
        return len(self._repositories)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> Optional[RepositoryDeclaration]:
        return self._by_name.get(name)

    @property
    def names(self) -> list[str]:
        return [repository.name for repository in self._repositories]
