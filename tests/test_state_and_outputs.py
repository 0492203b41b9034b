from __future__ import annotations

import json

import pytest

from repoaccess.common.errors import StateError
from repoaccess.core.grouping import ProviderPolicy, group_repositories
from repoaccess.outputs import build_outputs, repository_flags
from repoaccess.providers.base import ProviderReport
from repoaccess.state import load_outputs, save_outputs


def test_load_outputs_without_previous_run(tmp_path):
    assert load_outputs(tmp_path / "dev.json") == {}


def test_save_and_load_outputs(tmp_path):
    path = tmp_path / "state" / "dev.json"
    outputs = {"repositories": {"svc": {"managed": True}}, "aws": {"allowed": [], "configured": {}}}

    save_outputs(path, outputs)

    assert load_outputs(path) == outputs
    assert not path.with_suffix(".json.tmp").exists()


def test_corrupt_state_is_fatal(tmp_path):
    path = tmp_path / "dev.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StateError):
        load_outputs(path)


def test_state_must_be_an_object(tmp_path):
    path = tmp_path / "dev.json"
    path.write_text(json.dumps(["svc"]), encoding="utf-8")

    with pytest.raises(StateError, match="JSON object"):
        load_outputs(path)


def grouped_report(provider, allowed, repositories, select):
    grouping = group_repositories(repositories, ProviderPolicy(name=provider, allowed=tuple(allowed)), select)
    return ProviderReport(provider=provider, allowed=list(allowed), grouping=grouping)


def test_repository_flags_follow_grouping_outcomes(make_repository):
    repository = make_repository(
        "svc",
        accessPermissions={
            "google": {"project": "proj-a", "hmacKey": True},
            "gitlab": {"group": "acme", "scopes": ["api"]},
            "tailscale": True,
        },
    )
    reports = {
        "google": grouped_report("google", ["proj-a"], [repository], lambda r: r.access_permissions.google),
        "aws": grouped_report("aws", ["111111111111"], [repository], lambda r: r.access_permissions.aws),
    }

    assert repository_flags(repository, reports, allow_hmac_keys=True) == {
        "gitlab": True,
        "google": True,
        "gcs": True,
        "aws": False,
        "vault": True,
        "tailscale": True,
        "managed": True,
    }
    assert repository_flags(repository, reports, allow_hmac_keys=False)["gcs"] is False


def test_rejected_request_sets_no_flags(make_repository):
    repository = make_repository(
        "rogue",
        accessPermissions={
            "google": {"project": "unknown-project", "hmacKey": True},
            "aws": {"account": "999999999999"},
        },
    )
    reports = {
        "google": grouped_report("google", ["proj-a"], [repository], lambda r: r.access_permissions.google),
        "aws": grouped_report("aws", ["111111111111"], [repository], lambda r: r.access_permissions.aws),
    }

    flags = repository_flags(repository, reports, allow_hmac_keys=True)

    assert (flags["google"], flags["gcs"], flags["aws"]) == (False, False, False)


def test_gitlab_flag_requires_scopes(make_repository):
    repository = make_repository("svc", accessPermissions={"gitlab": {"group": "acme"}})

    assert repository_flags(repository, {})["gitlab"] is False


def test_build_outputs_sorts_and_fills_missing_providers(make_repository):
    aws = ProviderReport(provider="aws", allowed=["222222222222", "111111111111"])
    aws.record("svc-b", ["111111111111"])
    aws.record("svc-a", ["111111111111"])
    gitlab = ProviderReport(provider="gitlab", extra={"tokens": ["svc-b", "svc-a"]})

    outputs = build_outputs([make_repository("svc-a"), make_repository("svc-b")], {"aws": aws, "gitlab": gitlab})

    assert outputs["aws"] == {
        "allowed": ["111111111111", "222222222222"],
        "configured": {"111111111111": ["svc-b", "svc-a"]},
    }
    assert outputs["google"] == {"allowed": [], "configured": {}}
    assert outputs["gitlab"] == {"tokens": ["svc-a", "svc-b"]}
    assert outputs["tailscale"] == {"clients": []}
    assert outputs["vault"] == {"projects": []}
    assert sorted(outputs["repositories"]) == ["svc-a", "svc-b"]
