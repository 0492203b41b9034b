"""AWS: one GitHub OIDC provider per account, one CI role per repository."""

from __future__ import annotations

from typing import Optional

import structlog

from ..common.context import RunContext
from ..common.errors import IdentityError, format_event
from ..common.naming import budget
from ..common.schemas import AwsAccess, AwsConfig, RepositoryDeclaration
from ..core.federation import FederationDeduplicator
from ..core.grouping import ProviderPolicy, ResolvedRequest
from ..core.publication import SecretPublisher
from .base import AwsIam, CloudProvider

LOGGER = structlog.get_logger("repoaccess.providers.aws")

GITHUB_OIDC_URL = "https://token.actions.githubusercontent.com"
GITHUB_OIDC_HOST = "token.actions.githubusercontent.com"
STS_AUDIENCE = "sts.amazonaws.com"
# IAM ignores the thumbprint for the GitHub issuer but the API still requires one
GITHUB_OIDC_THUMBPRINT = "f" * 40

DEFAULT_PERMISSIONS = ("iam:*", "s3:*", "kms:*")


def trust_policy(provider_arn: str, owner: str, repository: str) -> dict:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Action": "sts:AssumeRoleWithWebIdentity",
                "Principal": {"Federated": provider_arn},
                "Condition": {
                    "StringEquals": {f"{GITHUB_OIDC_HOST}:aud": STS_AUDIENCE},
                    "StringLike": {f"{GITHUB_OIDC_HOST}:sub": f"repo:{owner}/{repository}:*"},
                },
            }
        ],
    }


def permission_policy(actions: list[str]) -> dict:
    return {
        "Version": "2012-10-17",
        "Statement": [{"Effect": "Allow", "Action": actions, "Resource": "*"}],
    }


class AwsProvider(CloudProvider[str]):
    name = "aws"

    def __init__(self, config: AwsConfig, iam: AwsIam, publisher: SecretPublisher) -> None:
        self._config = config
        self._iam = iam
        self._publisher = publisher

    def policy(self) -> ProviderPolicy:
        return ProviderPolicy(
            name=self.name,
            allowed=tuple(self._config.account),
            default_permissions=DEFAULT_PERMISSIONS,
            default_region=self._config.default_region,
        )

    def select(self, repository: RepositoryDeclaration) -> Optional[AwsAccess]:
        return repository.access_permissions.aws

    async def federate(self, context: RunContext, target: str) -> str:
        return await self._iam.create_oidc_provider(
            target, GITHUB_OIDC_URL, [STS_AUDIENCE], [GITHUB_OIDC_THUMBPRINT]
        )

    async def provision(
        self,
        context: RunContext,
        request: ResolvedRequest,
        federation: FederationDeduplicator[str],
        mount: Optional[str],
    ) -> None:
        account = request.target
        repository = request.name
        provider_arn = federation.handle(account)
        role_name = budget("aws-role").name(repository, account)
        policy_name = budget("aws-policy").name(repository, account)
        tags = {**context.labels, "repository": repository, "purpose": "github-repository"}
        description = f"GitHub Repository: {repository}"

        try:
            role_arn = await self._iam.create_role(
                account,
                role_name,
                trust_policy(provider_arn, context.owner, repository),
                description,
                tags,
            )
            await self._iam.put_role_policy(
                account,
                role_name,
                policy_name,
                permission_policy(request.permissions_for(account, DEFAULT_PERMISSIONS)),
            )
        except Exception as exc:
            LOGGER.error(
                format_event(self.name, "iam", f"error creating CI role for {repository}", account),
                error=str(exc),
            )
            raise IdentityError(self.name, "iam", f"error creating CI role ({exc})", account, repository) from exc

        LOGGER.info(format_event(self.name, "iam", f"CI role ready for {repository}", account), role=role_name)
        await self._publisher.publish(
            mount,
            "aws",
            {"identity_role_arn": role_arn, "region": request.region or ""},
            provider=self.name,
        )
