from __future__ import annotations

import dataclasses

import pytest

from repoaccess.common.schemas import VaultMountAccess
from repoaccess.providers.vault import VaultProvider, jwt_role, render_policy


@pytest.fixture
def provider(memory, publisher):
    return VaultProvider(memory.secrets, memory.github, publisher)


@pytest.fixture
def repositories(make_repository):
    return [
        make_repository(
            "svc-x",
            accessPermissions={
                "vault": {
                    "additionalMounts": [
                        {"path": "shared", "create": True, "permissions": ["read"]},
                        {"path": "external", "permissions": ["read", "list"]},
                    ]
                }
            },
        ),
        make_repository(
            "svc-y",
            accessPermissions={
                "vault": {
                    "address": "https://vault.internal",
                    "additionalMounts": [{"path": "shared", "create": True, "permissions": ["read"]}],
                }
            },
        ),
        make_repository("svc-off", accessPermissions={"vault": {"enabled": False}}),
        make_repository("legacy", manageLifecycle=False),
    ]


def test_render_policy():
    policy = render_policy("svc-x", [VaultMountAccess(path="shared", permissions=["read", "list"])])

    assert policy == (
        'path "github-svc-x/*" {\n  capabilities = ["read", "list"]\n}\n\n'
        'path "shared/*" {\n  capabilities = ["read", "list"]\n}\n'
    )


def test_jwt_role_is_bound_to_repository():
    role = jwt_role("acme", "svc-x")

    assert role["bound_claims"] == {"repository": "acme/svc-x"}
    assert role["token_policies"] == ["github-svc-x"]
    assert role["token_ttl"] == 3600


@pytest.mark.asyncio
async def test_stores_created_for_eligible_repositories(provider, memory, context, repositories):
    stores = await provider.configure(context, repositories)

    assert stores.mounts == {"svc-x": "github-svc-x", "svc-y": "github-svc-y"}
    assert stores.report.extra == {"projects": ["svc-x", "svc-y"]}
    assert [call.args[0] for call in memory.secrets.calls_to("create_mount")].count("shared") == 1
    assert "external" not in memory.secrets.mounts
    assert memory.secrets.descriptions["github-svc-x"] == "GitHub repository: acme/svc-x"
    assert ("github", "github-svc-y") in memory.secrets.roles


@pytest.mark.asyncio
async def test_vault_record_and_actions_variables(provider, memory, context, repositories):
    await provider.configure(context, repositories)

    assert memory.secrets.mounts["github-svc-x"]["vault"] == {
        "address": "https://vault.example.com",
        "role": "github-svc-x",
        "path": "github",
    }
    assert memory.github.variables["svc-y"] == {
        "VAULT_ADDR": "https://vault.internal",
        "VAULT_ROLE": "github-svc-y",
        "VAULT_PATH": "github",
    }


@pytest.mark.asyncio
async def test_disconnected_vault_skips_everything(provider, memory, context, repositories):
    stores = await provider.configure(dataclasses.replace(context, vault_connected=False), repositories)

    assert stores.mounts == {}
    assert stores.report.extra == {"projects": []}
    assert memory.secrets.calls == []


@pytest.mark.asyncio
async def test_additional_mount_failure_aborts(provider, memory, context, repositories):
    memory.secrets.fail("create_mount", match="shared")

    stores = await provider.configure(context, repositories)

    assert stores.report.aborted.startswith("[vault][stores] error creating additional mount")
    assert stores.mounts == {}


@pytest.mark.asyncio
async def test_repository_failure_is_isolated(provider, memory, context, repositories):
    memory.secrets.fail("write_jwt_role", match="github-svc-y")

    stores = await provider.configure(context, repositories)

    assert stores.mounts == {"svc-x": "github-svc-x"}
    assert stores.report.failed["svc-y"].startswith("[vault][auth] error creating Vault authentication")


@pytest.mark.asyncio
async def test_variable_failure_keeps_the_mount(provider, memory, context, repositories):
    memory.github.fail("set_actions_variable", match="svc-y")

    stores = await provider.configure(context, repositories)

    assert stores.mounts == {"svc-x": "github-svc-x", "svc-y": "github-svc-y"}
    assert stores.report.failed["svc-y"].startswith("[vault][auth] error exposing Vault variables")
    assert stores.report.extra == {"projects": ["svc-x"]}


@pytest.mark.asyncio
async def test_vault_record_failure_keeps_the_mount(provider, memory, context, repositories):
    memory.secrets.fail("write", match="vault")

    stores = await provider.configure(context, repositories)

    assert stores.mounts == {"svc-x": "github-svc-x", "svc-y": "github-svc-y"}
    assert sorted(stores.report.failed) == ["svc-x", "svc-y"]
    assert memory.github.variables == {}
