from __future__ import annotations

import json

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from repoaccess.backends.github import GitHubRestApi, mint_app_jwt
from repoaccess.backends.gitlab import GitLabRestApi
from repoaccess.backends.http import JsonApi
from repoaccess.backends.scaleway import ScalewayIamApi
from repoaccess.backends.tailscale import TailscaleRestApi
from repoaccess.backends.vault import VaultSecretStore
from repoaccess.common.errors import BackendError


def _path(request: httpx.Request) -> str:
    return request.url.raw_path.decode("ascii").split("?", 1)[0]


class FakeServer:
    """Route table for :class:`httpx.MockTransport` that remembers every request."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, _path(request)))
        if handler is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if callable(handler):
            return handler(request)
        return handler

    def seen(self) -> list[tuple[str, str]]:
        return [(request.method, _path(request)) for request in self.requests]

    def body(self, index: int):
        return json.loads(self.requests[index].content)


def client_for(server: FakeServer) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(server))


@pytest.mark.asyncio
async def test_json_api_maps_statuses():
    server = FakeServer(
        {
            ("GET", "/ok"): httpx.Response(200, json={"value": 1}),
            ("DELETE", "/ok"): httpx.Response(204),
            ("GET", "/broken"): httpx.Response(500, text="boom"),
        }
    )
    async with client_for(server) as client:
        api = JsonApi(client, "https://api.example.com/")

        assert await api.request("GET", "ok") == {"value": 1}
        assert await api.request("DELETE", "ok") == {}
        assert await api.request("GET", "missing", missing=(404,)) is None
        with pytest.raises(BackendError) as exc_info:
            await api.request("GET", "broken")

    assert exc_info.value.operation == "GET broken"
    assert "status 500: boom" in str(exc_info.value)


@pytest.mark.asyncio
async def test_json_api_wraps_transport_errors():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
        with pytest.raises(BackendError) as exc_info:
            await JsonApi(client, "https://api.example.com").request("GET", "anything")

    assert exc_info.value.detail == "connection refused"


@pytest.mark.asyncio
async def test_vault_creates_missing_mount_and_reads_records():
    server = FakeServer(
        {
            ("GET", "/v1/sys/mounts/github-svc"): httpx.Response(400, json={"errors": ["no mount"]}),
            ("POST", "/v1/sys/mounts/github-svc"): httpx.Response(204),
            ("GET", "/v1/github-svc/data/aws"): httpx.Response(200, json={"data": {"data": {"role_arn": "arn"}}}),
        }
    )
    async with client_for(server) as client:
        vault = VaultSecretStore(client, "https://vault.example.com/", "root")

        assert await vault.create_mount("github-svc", "GitHub repository: acme/svc") == "github-svc"
        assert await vault.read("github-svc", "aws") == {"role_arn": "arn"}
        assert await vault.read("github-svc", "google-cloud") is None

    assert server.body(1) == {"type": "kv", "description": "GitHub repository: acme/svc", "options": {"version": "2"}}
    assert all(request.headers["X-Vault-Token"] == "root" for request in server.requests)


@pytest.mark.asyncio
async def test_github_variable_falls_back_to_create():
    server = FakeServer({("POST", "/repos/acme/svc/actions/variables"): httpx.Response(201)})
    async with client_for(server) as client:
        api = GitHubRestApi(client, token="ghp_test")
        await api.set_actions_variable("acme", "svc", "VAULT_ROLE", "github-svc")

    assert server.seen() == [
        ("PATCH", "/repos/acme/svc/actions/variables/VAULT_ROLE"),
        ("POST", "/repos/acme/svc/actions/variables"),
    ]
    assert server.body(1) == {"name": "VAULT_ROLE", "value": "github-svc"}
    assert server.requests[0].headers["Authorization"] == "Bearer ghp_test"
    assert server.requests[0].headers["X-GitHub-Api-Version"] == "2022-11-28"


@pytest.mark.asyncio
async def test_github_ruleset_updates_existing_by_name():
    server = FakeServer(
        {
            ("GET", "/repos/acme/svc/rulesets"): httpx.Response(200, json=[{"id": 7, "name": "branch-acme-svc"}]),
            ("PUT", "/repos/acme/svc/rulesets/7"): httpx.Response(200, json={"id": 7}),
        }
    )
    async with client_for(server) as client:
        await GitHubRestApi(client, token="t").upsert_ruleset("acme", "svc", {"name": "branch-acme-svc"})

    assert server.seen()[-1] == ("PUT", "/repos/acme/svc/rulesets/7")


@pytest.mark.asyncio
async def test_github_creates_in_organisation():
    server = FakeServer(
        {
            ("GET", "/users/acme"): httpx.Response(200, json={"type": "Organization"}),
            ("POST", "/orgs/acme/repos"): httpx.Response(201, json={"name": "svc"}),
        }
    )
    async with client_for(server) as client:
        created = await GitHubRestApi(client, token="t").create_repository("acme", {"name": "svc"})

    assert created == {"name": "svc"}


def test_github_requires_credentials():
    with pytest.raises(ValueError):
        GitHubRestApi(object())


def test_app_jwt_is_signed_for_the_app():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()

    token = mint_app_jwt(1234, pem, now=1_700_000_000)
    claims = jwt.decode(token, key.public_key(), algorithms=["RS256"], options={"verify_exp": False})

    assert claims == {"iat": 1_699_999_940, "exp": 1_700_000_480, "iss": "1234"}


@pytest.mark.asyncio
async def test_gitlab_skips_existing_active_token():
    tokens = [{"name": "svc", "active": True, "revoked": False}]
    server = FakeServer({("GET", "/api/v4/groups/acme%2Fmirrors/access_tokens"): httpx.Response(200, json=tokens)})
    async with client_for(server) as client:
        api = GitLabRestApi(client, "https://gitlab.example.com/", "glpat-admin")
        assert await api.create_group_access_token("acme/mirrors", "svc", ["api"]) is None

    assert server.requests[0].headers["PRIVATE-TOKEN"] == "glpat-admin"
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_gitlab_creates_maintainer_token():
    server = FakeServer(
        {
            ("GET", "/api/v4/groups/acme/access_tokens"): httpx.Response(200, json=[{"name": "svc", "revoked": True}]),
            ("POST", "/api/v4/groups/acme/access_tokens"): httpx.Response(201, json={"token": "glpat-new"}),
        }
    )
    async with client_for(server) as client:
        token = await GitLabRestApi(client, "https://gitlab.example.com", "t").create_group_access_token(
            "acme", "svc", ["read_repository"]
        )

    assert token == "glpat-new"
    body = server.body(1)
    assert body["access_level"] == 40
    assert body["scopes"] == ["read_repository"]


@pytest.mark.asyncio
async def test_tailscale_creates_client_once():
    listing = {"keys": [{"keyType": "client", "description": "svc-y", "revoked": False}]}
    server = FakeServer(
        {
            ("GET", "/api/v2/tailnet/-/keys"): httpx.Response(200, json=listing),
            ("POST", "/api/v2/tailnet/-/keys"): httpx.Response(200, json={"id": "k123", "key": "tskey-client-abc"}),
        }
    )
    async with client_for(server) as client:
        api = TailscaleRestApi(client, "tskey-api")
        created = await api.create_oauth_client("svc-x", ["devices:core"])
        existing = await api.create_oauth_client("svc-y", ["devices:core"])

    assert created.access_key == "k123"
    assert created.secret_key == "tskey-client-abc"
    assert existing is None
    assert server.body(1) == {"keyType": "client", "description": "svc-x", "scopes": ["devices:core"]}


@pytest.mark.asyncio
async def test_scaleway_reuses_application_and_skips_existing_key():
    server = FakeServer(
        {
            ("GET", "/iam/v1alpha1/applications"): httpx.Response(
                200, json={"applications": [{"id": "app-1", "name": "ci-svc"}]}
            ),
            ("GET", "/iam/v1alpha1/api-keys"): httpx.Response(200, json={"api_keys": [{"access_key": "SCW1"}]}),
        }
    )
    async with client_for(server) as client:
        api = ScalewayIamApi(client, "secret", "org-1")
        application = await api.create_application("ci-svc", "CI access")
        key = await api.create_api_key(application, "scw-project-main", "CI access")

    assert application == "app-1"
    assert key is None
    assert all(request.headers["X-Auth-Token"] == "secret" for request in server.requests)


@pytest.mark.asyncio
async def test_scaleway_policy_rules_replaced_when_present():
    server = FakeServer(
        {
            ("GET", "/iam/v1alpha1/policies"): httpx.Response(200, json={"policies": [{"id": "pol-1", "name": "ci"}]}),
            ("PUT", "/iam/v1alpha1/rules"): httpx.Response(200, json={"rules": []}),
        }
    )
    rules = [{"project_ids": ["scw-project-main"], "permission_set_names": ["ObjectStorageFullAccess"]}]
    async with client_for(server) as client:
        policy = await ScalewayIamApi(client, "secret", "org-1").create_policy("ci", "CI", "app-1", rules)

    assert policy == "pol-1"
    assert server.body(1) == {"policy_id": "pol-1", "rules": rules}
