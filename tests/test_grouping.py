from __future__ import annotations

import pytest

from repoaccess.common.schemas import CloudAccess, ScalewayAccess
from repoaccess.core.grouping import (
    GroupingResult,
    Outcome,
    ProviderPolicy,
    ValidationReport,
    group_repositories,
)

POLICY = ProviderPolicy(
    name="google",
    allowed=("proj-a", "proj-b"),
    default_permissions=("resourcemanager.projects.get",),
    default_region="europe-west1",
    default_services=("iam.googleapis.com",),
)


def select_google(repository):
    return repository.access_permissions.google


def test_grouping_skips_repositories_without_request(make_repository):
    repositories = [
        make_repository("svc-a", accessPermissions={"google": {"project": "proj-a"}}),
        make_repository("docs"),
        make_repository("empty", accessPermissions={"google": {}}),
    ]

    result = group_repositories(repositories, POLICY, select_google)

    assert list(result.requests) == ["svc-a"]
    assert result.by_target == {"proj-a": ["svc-a"]}
    assert result.outcome("docs") is Outcome.ABSENT
    assert result.outcome("empty") is Outcome.ABSENT
    assert result.rejected == []


def test_grouping_rejects_unknown_primary_target(make_repository):
    repositories = [
        make_repository("svc-a", accessPermissions={"google": {"project": "proj-a"}}),
        make_repository("rogue", accessPermissions={"google": {"project": "unknown-project"}}),
        make_repository("svc-b", accessPermissions={"google": {"project": "proj-a"}}),
    ]

    result = group_repositories(repositories, POLICY, select_google)

    assert result.by_target == {"proj-a": ["svc-a", "svc-b"]}
    assert "rogue" not in result.requests
    [issue] = result.rejected
    assert issue.outcome is Outcome.UNKNOWN_TARGET
    assert issue.target == "unknown-project"
    assert issue.message == (
        "[google][validation] repository rogue references an unconfigured target: unknown-project"
    )


def test_grouping_rejects_whole_request_on_unknown_linked_target(make_repository):
    repository = make_repository(
        "svc-x",
        accessPermissions={
            "google": {
                "project": "proj-a",
                "linkedProjects": {"proj-b": {}, "proj-z": {"accessLevel": "full"}},
            }
        },
    )

    result = group_repositories([repository], POLICY, select_google)

    assert result.requests == {}
    assert result.by_target == {}
    assert result.outcome("svc-x") is Outcome.UNKNOWN_LINKED_TARGET
    assert "unconfigured linked target: proj-z" in result.issues[0].message


def test_grouping_indexes_linked_targets_and_defaults(make_repository):
    repository = make_repository(
        "svc-x",
        accessPermissions={
            "google": {
                "project": "proj-a",
                "linkedProjects": {"proj-b": {"accessLevel": "restricted", "iamPermissions": ["storage.objects.get"]}},
            }
        },
    )

    result = group_repositories([repository], POLICY, select_google)

    request = result.requests["svc-x"]
    assert request.targets == ["proj-a", "proj-b"]
    assert request.region == "europe-west1"
    assert result.by_target == {"proj-a": ["svc-x"], "proj-b": ["svc-x"]}
    assert result.targets == ["proj-a", "proj-b"]


def test_grouping_keeps_requested_region(make_repository):
    repository = make_repository(
        "svc-a", accessPermissions={"google": {"project": "proj-b", "region": "us-central1"}}
    )

    result = group_repositories([repository], POLICY, select_google)

    assert result.requests["svc-a"].region == "us-central1"


def test_services_by_target_uses_requested_services_only_with_full_access(make_repository):
    repositories = [
        make_repository(
            "svc-x",
            accessPermissions={
                "google": {
                    "project": "proj-a",
                    "enabledServices": ["run.googleapis.com"],
                    "linkedProjects": {"proj-b": {"accessLevel": "restricted"}},
                }
            },
        ),
        make_repository(
            "svc-y",
            accessPermissions={
                "google": {
                    "project": "proj-a",
                    "enabledServices": ["run.googleapis.com", "pubsub.googleapis.com"],
                }
            },
        ),
    ]

    result = group_repositories(repositories, POLICY, select_google)
    services = result.services_by_target(POLICY.default_services)

    assert services["proj-a"] == ["run.googleapis.com", "iam.googleapis.com", "pubsub.googleapis.com"]
    assert services["proj-b"] == ["iam.googleapis.com"]


def test_validation_report_collects_rejections_per_provider(make_repository):
    aws_policy = ProviderPolicy(name="aws", allowed=("111111111111",))
    repositories = [
        make_repository("rogue", accessPermissions={"aws": {"account": "999"}, "google": {"project": "nope"}}),
        make_repository("plain"),
    ]

    report = ValidationReport()
    report.extend(group_repositories(repositories, POLICY, select_google))
    report.extend(group_repositories(repositories, aws_policy, lambda repository: repository.access_permissions.aws))

    assert len(report.issues) == 4
    assert [issue.provider for issue in report.rejected] == ["google", "aws"]
    assert [issue.repository for issue in report.for_provider("aws")] == ["rogue", "plain"]
    assert report.as_dict()[1] == {
        "provider": "aws",
        "repository": "rogue",
        "outcome": "unknown-target",
        "target": "999",
    }


@pytest.mark.parametrize(
    ("outcome", "rejected"),
    [
        (Outcome.ACCEPTED, False),
        (Outcome.ABSENT, False),
        (Outcome.UNKNOWN_TARGET, True),
        (Outcome.UNKNOWN_LINKED_TARGET, True),
    ],
)
def test_outcome_rejected_flag(outcome, rejected):
    assert outcome.rejected is rejected


def test_outcome_for_unknown_repository_is_absent():
    assert GroupingResult(provider="aws").outcome("missing") is Outcome.ABSENT


def test_base_request_without_target_is_absent(make_repository):
    result = group_repositories([make_repository("svc")], POLICY, lambda repository: CloudAccess())

    assert CloudAccess().target is None
    assert result.outcome("svc") is Outcome.ABSENT


def test_scaleway_request_takes_organisation_from_stack():
    request = ScalewayAccess.model_validate({"project": "main", "organizationId": "org-other"})

    assert "organization_id" not in ScalewayAccess.model_fields
    assert request.target == "main"
