"""In-memory collaborator backends.

Every backend records the operations it receives, so ``repoaccess plan`` can
print what an apply would do and tests can assert on calls. Failures are
injected per operation, optionally restricted to calls mentioning a given
argument value.
"""

from __future__ import annotations

import copy
import hashlib
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from ..common.errors import BackendError
from ..orchestrator import Backends
from ..providers.base import FederatedIdentity, KeyPair


@dataclass(frozen=True)
class Call:
    operation: str
    args: tuple[Any, ...]

    def mentions(self, value: str) -> bool:
        return any(value == arg for arg in self.args)

    def describe(self) -> str:
        rendered = ", ".join(str(arg) for arg in self.args if isinstance(arg, (str, int)))
        return f"{self.operation}({rendered})"


@dataclass
class _Failure:
    operation: str
    match: Optional[str]
    error: Exception


class Recorder:
    def __init__(self, service: str) -> None:
        self.service = service
        self.calls: list[Call] = []
        self._failures: list[_Failure] = []

    def fail(self, operation: str, match: Optional[str] = None, error: Optional[Exception] = None) -> None:
        self._failures.append(
            _Failure(operation, match, error or BackendError(self.service, operation, "injected failure"))
        )

    def record(self, operation: str, *args: Any) -> None:
        call = Call(operation, args)
        for failure in self._failures:
            if failure.operation == operation and (failure.match is None or call.mentions(failure.match)):
                raise failure.error
        self.calls.append(call)

    def calls_to(self, operation: str) -> list[Call]:
        return [call for call in self.calls if call.operation == operation]

    def count(self, operation: str) -> int:
        return len(self.calls_to(operation))


def _fake_id(*parts: str, length: int = 12) -> str:
    return hashlib.sha256("/".join(parts).encode("utf-8")).hexdigest()[:length]


class MemorySecretStore(Recorder):
    def __init__(self) -> None:
        super().__init__("vault")
        self.mounts: dict[str, dict[str, dict[str, Any]]] = {}
        self.descriptions: dict[str, str] = {}
        self.policies: dict[str, str] = {}
        self.roles: dict[tuple[str, str], dict[str, Any]] = {}

    async def create_mount(self, path: str, description: str) -> str:
        self.record("create_mount", path)
        self.mounts.setdefault(path, {})
        self.descriptions[path] = description
        return path

    async def read(self, mount: str, key: str) -> Optional[dict[str, Any]]:
        value = self.mounts.get(mount, {}).get(key)
        return copy.deepcopy(value) if value is not None else None

    async def write(self, mount: str, key: str, payload: dict[str, Any]) -> None:
        self.record("write", mount, key)
        if mount not in self.mounts:
            raise BackendError(self.service, "write", f"mount {mount} does not exist")
        self.mounts[mount][key] = copy.deepcopy(payload)

    async def write_policy(self, name: str, policy: str) -> None:
        self.record("write_policy", name)
        self.policies[name] = policy

    async def write_jwt_role(self, backend: str, name: str, role: dict[str, Any]) -> None:
        self.record("write_jwt_role", backend, name)
        self.roles[(backend, name)] = dict(role)


class MemoryAwsIam(Recorder):
    def __init__(self) -> None:
        super().__init__("aws")
        self.oidc_providers: dict[str, str] = {}
        self.roles: dict[tuple[str, str], dict[str, Any]] = {}
        self.policies: dict[tuple[str, str], dict[str, Any]] = {}

    async def create_oidc_provider(
        self, account: str, url: str, client_ids: Sequence[str], thumbprints: Sequence[str]
    ) -> str:
        self.record("create_oidc_provider", account)
        host = url.split("://", 1)[-1]
        arn = f"arn:aws:iam::{account}:oidc-provider/{host}"
        self.oidc_providers[account] = arn
        return arn

    async def create_role(
        self, account: str, name: str, trust_policy: dict[str, Any], description: str, tags: Mapping[str, str]
    ) -> str:
        self.record("create_role", account, name)
        arn = f"arn:aws:iam::{account}:role/{name}"
        self.roles[(account, name)] = {"arn": arn, "trust_policy": trust_policy, "tags": dict(tags)}
        return arn

    async def put_role_policy(self, account: str, role: str, name: str, document: dict[str, Any]) -> None:
        self.record("put_role_policy", account, role, name)
        self.policies[(account, role)] = document


class MemoryGoogleIam(Recorder):
    def __init__(self) -> None:
        super().__init__("google")
        self.services: dict[str, list[str]] = {}
        self.pools: dict[str, FederatedIdentity] = {}
        self.roles: dict[tuple[str, str], list[str]] = {}
        self.service_accounts: dict[tuple[str, str], str] = {}
        self.members: list[tuple[str, str, str]] = []
        self.workload_bindings: list[tuple[str, str, str]] = []
        self.hmac_keys: dict[str, KeyPair] = {}

    async def enable_services(self, project: str, services: Sequence[str]) -> None:
        self.record("enable_services", project)
        self.services[project] = list(services)

    async def create_workload_identity_pool(
        self, project: str, pool_id: str, provider_id: str, owner: str
    ) -> FederatedIdentity:
        self.record("create_workload_identity_pool", project, pool_id)
        pool = f"projects/{project}/locations/global/workloadIdentityPools/{pool_id}"
        identity = FederatedIdentity(
            target=project, identifier=f"{pool}/providers/{provider_id}", attributes={"pool": pool}
        )
        self.pools[project] = identity
        return identity

    async def create_custom_role(
        self, project: str, role_id: str, title: str, description: str, permissions: Sequence[str]
    ) -> str:
        self.record("create_custom_role", project, role_id)
        self.roles[(project, role_id)] = list(permissions)
        return f"projects/{project}/roles/{role_id}"

    async def create_service_account(
        self, project: str, account_id: str, display_name: str, description: str
    ) -> str:
        self.record("create_service_account", project, account_id)
        email = f"{account_id}@{project}.iam.gserviceaccount.com"
        self.service_accounts[(project, account_id)] = email
        return email

    async def add_project_member(self, project: str, role: str, member: str) -> None:
        self.record("add_project_member", project, role, member)
        self.members.append((project, role, member))

    async def bind_workload_identity(self, project: str, email: str, member: str) -> None:
        self.record("bind_workload_identity", project, email, member)
        self.workload_bindings.append((project, email, member))

    async def create_hmac_key(self, project: str, email: str) -> Optional[KeyPair]:
        self.record("create_hmac_key", project, email)
        if email in self.hmac_keys:
            return None
        key = KeyPair(
            access_key=f"GOOG{_fake_id(email, length=20).upper()}",
            secret_key=_fake_id("secret", email, length=40),
        )
        self.hmac_keys[email] = key
        return key


class MemoryScalewayIam(Recorder):
    def __init__(self) -> None:
        super().__init__("scaleway")
        self.applications: dict[str, str] = {}
        self.keys: dict[str, KeyPair] = {}
        self.policies: dict[str, dict[str, Any]] = {}

    async def create_application(self, name: str, description: str) -> str:
        self.record("create_application", name)
        application_id = self.applications.setdefault(name, _fake_id("application", name, length=32))
        return application_id

    async def create_api_key(self, application_id: str, project_id: str, description: str) -> Optional[KeyPair]:
        self.record("create_api_key", application_id, project_id)
        if application_id in self.keys:
            return None
        key = KeyPair(
            access_key=f"SCW{_fake_id(application_id, length=17).upper()}",
            secret_key=_fake_id("key", application_id, length=36),
        )
        self.keys[application_id] = key
        return key

    async def create_policy(
        self, name: str, description: str, application_id: str, rules: Sequence[dict[str, Any]]
    ) -> str:
        self.record("create_policy", name, application_id)
        self.policies[name] = {"application_id": application_id, "rules": list(rules)}
        return _fake_id("policy", name, length=32)


class MemoryGitLab(Recorder):
    def __init__(self) -> None:
        super().__init__("gitlab")
        self.tokens: dict[tuple[str, str], list[str]] = {}

    async def create_group_access_token(self, group: str, name: str, scopes: Sequence[str]) -> Optional[str]:
        self.record("create_group_access_token", group, name)
        if (group, name) in self.tokens:
            return None
        self.tokens[(group, name)] = list(scopes)
        return f"glpat-{_fake_id(group, name, length=20)}"


class MemoryTailscale(Recorder):
    def __init__(self) -> None:
        super().__init__("tailscale")
        self.clients: dict[str, list[str]] = {}

    async def create_oauth_client(self, description: str, scopes: Sequence[str]) -> Optional[KeyPair]:
        self.record("create_oauth_client", description)
        if description in self.clients:
            return None
        self.clients[description] = list(scopes)
        client_id = _fake_id("client", description, length=16)
        secret = _fake_id("secret", description, length=24)
        return KeyPair(access_key=client_id, secret_key=f"tskey-client-{client_id}-{secret}")


class MemoryGitHub(Recorder):
    def __init__(self, existing: Sequence[str] = ()) -> None:
        super().__init__("github")
        self.repositories: dict[str, dict[str, Any]] = {name: {"name": name} for name in existing}
        self.topics: dict[str, list[str]] = {}
        self.pages: dict[str, str] = {}
        self.rulesets: dict[str, dict[str, Any]] = {}
        self.variables: dict[str, dict[str, str]] = {}
        self.deleted: list[str] = []

    async def get_repository(self, owner: str, name: str) -> Optional[dict[str, Any]]:
        repository = self.repositories.get(name)
        return dict(repository) if repository is not None else None

    async def create_repository(self, owner: str, settings: dict[str, Any]) -> dict[str, Any]:
        self.record("create_repository", owner, settings["name"])
        self.repositories[settings["name"]] = dict(settings)
        return dict(settings)

    async def update_repository(self, owner: str, name: str, settings: dict[str, Any]) -> dict[str, Any]:
        self.record("update_repository", owner, name)
        self.repositories[name] = {**self.repositories.get(name, {}), **settings}
        return dict(self.repositories[name])

    async def replace_topics(self, owner: str, name: str, topics: Sequence[str]) -> None:
        self.record("replace_topics", owner, name)
        self.topics[name] = list(topics)

    async def configure_pages(self, owner: str, name: str, branch: str) -> None:
        self.record("configure_pages", owner, name, branch)
        self.pages[name] = branch

    async def upsert_ruleset(self, owner: str, name: str, ruleset: dict[str, Any]) -> None:
        self.record("upsert_ruleset", owner, name)
        self.rulesets[name] = ruleset

    async def set_actions_variable(self, owner: str, name: str, variable: str, value: str) -> None:
        self.record("set_actions_variable", owner, name, variable)
        self.variables.setdefault(name, {})[variable] = value

    async def delete_repository(self, owner: str, name: str) -> None:
        self.record("delete_repository", owner, name)
        self.repositories.pop(name, None)
        self.deleted.append(name)


@dataclass
class MemoryBackends:
    secrets: MemorySecretStore = field(default_factory=MemorySecretStore)
    github: MemoryGitHub = field(default_factory=MemoryGitHub)
    aws: MemoryAwsIam = field(default_factory=MemoryAwsIam)
    google: MemoryGoogleIam = field(default_factory=MemoryGoogleIam)
    scaleway: MemoryScalewayIam = field(default_factory=MemoryScalewayIam)
    gitlab: MemoryGitLab = field(default_factory=MemoryGitLab)
    tailscale: MemoryTailscale = field(default_factory=MemoryTailscale)

    @classmethod
    def seeded(cls, previous_outputs: Mapping[str, Any]) -> "MemoryBackends":
        """Backends whose GitHub already holds the repositories of the previous run."""

        existing = sorted((previous_outputs.get("repositories") or {}).keys())
        return cls(github=MemoryGitHub(existing=existing))

    def as_backends(self) -> Backends:
        return Backends(
            secrets=self.secrets,
            github=self.github,
            aws=self.aws,
            google=self.google,
            scaleway=self.scaleway,
            gitlab=self.gitlab,
            tailscale=self.tailscale,
        )

    def planned(self) -> dict[str, list[str]]:
        recorders: list[Recorder] = [
            self.github,
            self.secrets,
            self.aws,
            self.google,
            self.scaleway,
            self.gitlab,
            self.tailscale,
        ]
        return {recorder.service: [call.describe() for call in recorder.calls] for recorder in recorders}
