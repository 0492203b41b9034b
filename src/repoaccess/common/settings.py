"""Runtime settings read from the environment."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, HttpUrl, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class RunSettings(BaseSettings):
    """Settings for a single provisioning run."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    config_path: Path = env_field(Path("config/stack.yaml"), "REPOACCESS_CONFIG")
    repositories_dir: Path = env_field(Path("assets/repositories"), "REPOACCESS_REPOSITORIES_DIR")
    environment: str = env_field("dev", "REPOACCESS_ENVIRONMENT")
    state_dir: Path = env_field(Path(".repoaccess"), "REPOACCESS_STATE_DIR")
    log_level: str = env_field("INFO", "REPOACCESS_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "REPOACCESS_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "REPOACCESS_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(1.0, "REPOACCESS_OTEL_SAMPLER_RATIO")

    allow_repository_deletion: bool = env_field(False, "ALLOW_REPOSITORY_DELETION")
    ignore_unmanaged_repositories: bool = env_field(False, "IGNORE_UNMANAGED_REPOSITORIES")

    github_token: Optional[SecretStr] = env_field(None, "GITHUB_TOKEN")
    github_app_id: Optional[int] = env_field(None, "GITHUB_APP_ID")
    github_app_private_key: Optional[SecretStr] = env_field(None, "GITHUB_APP_PRIVATE_KEY")
    github_app_installation_id: Optional[int] = env_field(None, "GITHUB_APP_INSTALLATION_ID")
    vault_token: Optional[SecretStr] = env_field(None, "VAULT_TOKEN")
    scaleway_secret_key: Optional[SecretStr] = env_field(None, "SCW_SECRET_KEY")
    tailscale_api_key: Optional[SecretStr] = env_field(None, "TAILSCALE_API_KEY")
    tailscale_tailnet: str = env_field("-", "TAILSCALE_TAILNET")
    gitlab_token: Optional[SecretStr] = env_field(None, "GITLAB_TOKEN")
    gitlab_url: HttpUrl = env_field("https://gitlab.com", "GITLAB_URL")
    google_scopes_value: str = env_field(
        "https://www.googleapis.com/auth/cloud-platform", "REPOACCESS_GOOGLE_SCOPES"
    )
    request_timeout_seconds: float = env_field(30.0, "REPOACCESS_REQUEST_TIMEOUT")

    @field_validator("allow_repository_deletion", "ignore_unmanaged_repositories", mode="before")
    @classmethod
    def _parse_toggle(cls, value):
        # only the literal "true" enables a toggle
        if value is None:
            return False
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return bool(value)

    @property
    def google_scopes(self) -> list[str]:
        return [item.strip() for item in self.google_scopes_value.split(",") if item.strip()]

    @property
    def state_path(self) -> Path:
        return self.state_dir / f"{self.environment}.json"

    @property
    def has_github_app(self) -> bool:
        return (
            self.github_app_id is not None
            and self.github_app_private_key is not None
            and self.github_app_installation_id is not None
        )
