"""Configuration and repository declaration models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

FULL_ACCESS_LEVEL = "full"


class ConfigModel(BaseModel):
    """Immutable model reading camelCase YAML keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


class LinkedAccess(ConfigModel):
    """Access granted to a secondary (linked) account or project."""

    access_level: Optional[str] = None
    iam_permissions: list[str] = Field(default_factory=list)

    @property
    def is_full(self) -> bool:
        return self.access_level == FULL_ACCESS_LEVEL


class CloudAccess(ConfigModel):
    region: Optional[str] = None
    iam_permissions: list[str] = Field(default_factory=list)

    @property
    def target(self) -> Optional[str]:
        return None

    @property
    def linked(self) -> dict[str, LinkedAccess]:
        return {}


class AwsAccess(CloudAccess):
    account: Optional[str] = None

    @property
    def target(self) -> Optional[str]:
        return self.account


class GoogleAccess(CloudAccess):
    project: Optional[str] = None
    linked_projects: dict[str, LinkedAccess] = Field(default_factory=dict)
    enabled_services: list[str] = Field(default_factory=list)
    hmac_key: bool = False

    @property
    def target(self) -> Optional[str]:
        return self.project

    @property
    def linked(self) -> dict[str, LinkedAccess]:
        return self.linked_projects


class ScalewayAccess(CloudAccess):
    zone: Optional[str] = None
    project: Optional[str] = None
    linked_projects: dict[str, LinkedAccess] = Field(default_factory=dict)

    @property
    def target(self) -> Optional[str]:
        return self.project

    @property
    def linked(self) -> dict[str, LinkedAccess]:
        return self.linked_projects


class VaultMountAccess(ConfigModel):
    path: str
    create: bool = False
    permissions: list[str] = Field(default_factory=list)


class VaultAccess(ConfigModel):
    enabled: Optional[bool] = None
    address: Optional[str] = None
    additional_mounts: list[VaultMountAccess] = Field(default_factory=list)


class GitLabAccess(ConfigModel):
    group: str = ""
    scopes: list[str] = Field(default_factory=list)


class AccessPermissions(ConfigModel):
    tailscale: bool = False
    vault: Optional[VaultAccess] = None
    google: Optional[GoogleAccess] = None
    aws: Optional[AwsAccess] = None
    scaleway: Optional[ScalewayAccess] = None
    gitlab: Optional[GitLabAccess] = None


class RulesetConfig(ConfigModel):
    enabled: bool = False
    patterns: list[str] = Field(default_factory=list)
    restrict_creation: bool = False
    allow_force_push: bool = False
    require_conversation_resolution: bool = False
    require_signed_commits: bool = False
    require_code_owner_review: bool = False
    approving_review_count: int = 0
    require_last_push_approval: bool = False
    require_updated_branch_before_merge: bool = False
    enable_merge_queue: bool = False
    required_checks: list[str] = Field(default_factory=list)
    allow_bypass: bool = False
    allow_bypass_integrations: list[int] = Field(default_factory=list)
    enable_wip_integration: bool = False


class RulesetsConfig(ConfigModel):
    branch: Optional[RulesetConfig] = None
    tag: Optional[RulesetConfig] = None


class RepositoryDeclaration(ConfigModel):
    """A repository declared in the repositories directory."""

    name: str
    description: str = ""
    manage_lifecycle: bool = True
    visibility: str = "public"
    protected: bool = False
    topics: list[str] = Field(default_factory=list)
    homepage: Optional[str] = None
    enable_wiki: bool = False
    enable_discussions: bool = False
    create_project: bool = False
    pages_branch: Optional[str] = None
    rulesets: Optional[RulesetsConfig] = None
    access_permissions: AccessPermissions = Field(default_factory=AccessPermissions)

    @property
    def is_private(self) -> bool:
        return self.visibility == "private"

    @property
    def vault_enabled(self) -> bool:
        vault = self.access_permissions.vault
        enabled = True if vault is None or vault.enabled is None else vault.enabled
        return self.manage_lifecycle and enabled


class RepositoriesConfig(ConfigModel):
    owner: str
    subscription: Optional[str] = None

    @property
    def has_subscription(self) -> bool:
        return self.subscription is not None and self.subscription != "none"


class AwsAccount(ConfigModel):
    role_arn: Optional[str] = None
    external_id: Optional[str] = None


class AwsConfig(ConfigModel):
    default_region: Optional[str] = None
    account: dict[str, AwsAccount] = Field(default_factory=dict)


class GoogleConfig(ConfigModel):
    default_region: Optional[str] = None
    projects: list[str] = Field(default_factory=list)
    allow_hmac_keys: bool = False


class ScalewayConfig(ConfigModel):
    organization_id: Optional[str] = None
    default_region: Optional[str] = None
    default_zone: Optional[str] = None
    projects: dict[str, str] = Field(default_factory=dict)


class VaultConfig(ConfigModel):
    enabled: bool = False
    address: Optional[str] = None


class StackConfig(ConfigModel):
    """Top-level stack configuration."""

    repositories: RepositoriesConfig
    aws: AwsConfig = Field(default_factory=AwsConfig)
    google: GoogleConfig = Field(default_factory=GoogleConfig)
    scaleway: ScalewayConfig = Field(default_factory=ScalewayConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
