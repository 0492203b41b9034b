from __future__ import annotations

import dataclasses

import pytest

from repoaccess.backends.memory import MemoryGitHub
from repoaccess.common.errors import UnmanagedRepositoryError
from repoaccess.common.schemas import RulesetConfig
from repoaccess.providers.github import GitHubProvider, branch_ruleset, repository_settings, ruleset_allowed

RULESET = {
    "branch": {
        "enabled": True,
        "patterns": ["release/*"],
        "requireSignedCommits": True,
        "approvingReviewCount": 2,
        "requiredChecks": ["build"],
        "enableWipIntegration": True,
        "allowBypass": True,
        "allowBypassIntegrations": [12345],
    }
}


def rule_types(ruleset):
    return [rule["type"] for rule in ruleset["rules"]]


def test_repository_settings(make_repository):
    settings = repository_settings(
        make_repository("svc", description="Service", visibility="private", enableWiki=True, homepage="https://x")
    )

    assert settings["private"] is True
    assert settings["has_wiki"] is True
    assert settings["homepage"] == "https://x"
    assert settings["has_discussions"] is False


def test_branch_ruleset_shape():
    ruleset = branch_ruleset("acme", "svc", RulesetConfig.model_validate(RULESET["branch"]))

    assert ruleset["name"] == "branch-acme-svc"
    assert ruleset["conditions"]["ref_name"]["include"] == ["~DEFAULT_BRANCH", "release/*"]
    assert rule_types(ruleset) == [
        "deletion",
        "non_fast_forward",
        "required_signatures",
        "pull_request",
        "required_status_checks",
    ]
    checks = ruleset["rules"][-1]["parameters"]["required_status_checks"]
    assert checks == [{"context": "build"}, {"context": "WIP"}]
    assert [actor["actor_type"] for actor in ruleset["bypass_actors"]] == ["RepositoryRole", "Integration"]


def test_minimal_ruleset_allows_force_push_when_requested():
    ruleset = branch_ruleset("acme", "svc", RulesetConfig(enabled=True, allow_force_push=True, enable_merge_queue=True))

    assert rule_types(ruleset) == ["deletion", "pull_request", "merge_queue"]
    assert ruleset["bypass_actors"] == []


def test_ruleset_requires_subscription_for_private_repositories(make_repository, context):
    private = make_repository("svc", visibility="private", rulesets=RULESET)
    public = make_repository("lib", rulesets=RULESET)
    free = dataclasses.replace(context, subscription=None)

    assert ruleset_allowed(context, private) is True
    assert ruleset_allowed(free, private) is False
    assert ruleset_allowed(free, public) is True
    assert ruleset_allowed(context, make_repository("plain")) is False


@pytest.mark.asyncio
async def test_configure_creates_and_updates(make_repository, context):
    api = MemoryGitHub(existing=["existing"])
    repositories = [
        make_repository("new", topics=["infra"], pagesBranch="gh-pages", rulesets=RULESET),
        make_repository("existing", description="updated"),
    ]

    report = await GitHubProvider(api).configure(context, repositories)

    assert report.extra == {"repositories": ["new", "existing"]}
    assert api.count("create_repository") == 1
    assert api.count("update_repository") == 1
    assert api.topics == {"new": ["infra"], "existing": []}
    assert api.pages == {"new": "gh-pages"}
    assert list(api.rulesets) == ["new"]


@pytest.mark.asyncio
async def test_missing_unmanaged_repository_is_not_created(make_repository, context):
    api = MemoryGitHub()

    report = await GitHubProvider(api).configure(context, [make_repository("legacy", manageLifecycle=False)])

    assert api.count("create_repository") == 0
    assert report.ok


@pytest.mark.asyncio
async def test_configure_failure_is_recorded(make_repository, context):
    api = MemoryGitHub()
    api.fail("create_repository", match="acme")

    report = await GitHubProvider(api).configure(context, [make_repository("svc")])

    assert report.extra == {"repositories": []}
    assert report.failed["svc"].startswith("[github][repository] error configuring repository")


def test_unmanaged_guard(make_repository, context):
    provider = GitHubProvider(MemoryGitHub())
    legacy = make_repository("legacy", manageLifecycle=False)

    with pytest.raises(UnmanagedRepositoryError) as exc_info:
        provider.check_unmanaged(context, [legacy])
    assert "IGNORE_UNMANAGED_REPOSITORIES" in str(exc_info.value)

    provider.check_unmanaged(dataclasses.replace(context, ignore_unmanaged_repositories=True), [legacy])
    provider.check_unmanaged(
        dataclasses.replace(context, previous_outputs={"repositories": {"legacy": {"managed": False}}}), [legacy]
    )


@pytest.mark.asyncio
async def test_prune_deletes_only_when_allowed(context):
    previous = {"repositories": {"gone": {"managed": True}, "kept": {"managed": True}, "legacy": {"managed": False}}}
    api = MemoryGitHub(existing=["gone", "kept", "legacy"])
    provider = GitHubProvider(api)

    warned = await provider.prune(dataclasses.replace(context, previous_outputs=previous), ["kept"])
    assert warned == []
    assert api.deleted == []

    allowed = dataclasses.replace(context, previous_outputs=previous, allow_repository_deletion=True)
    deleted = await provider.prune(allowed, ["kept"])

    assert deleted == ["gone"]
    assert api.deleted == ["gone"]
