"""AWS IAM backend on boto3, assuming a management role per account."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Mapping, Optional, Sequence
from urllib.parse import urlparse

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from ..common.errors import BackendError
from ..common.schemas import AwsConfig

LOGGER = structlog.get_logger("repoaccess.backends.aws")

ROLE_SESSION_NAME = "repoaccess"


class BotoAwsIam:
    def __init__(self, config: AwsConfig, session: Optional[boto3.session.Session] = None) -> None:
        self._config = config
        self._session = session or boto3.session.Session()
        self._clients: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def _call(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, **kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise BackendError("aws", operation, str(exc)) from exc

    def _build_client(self, account: str) -> Any:
        settings = self._config.account.get(account)
        region = self._config.default_region
        if settings is None or not settings.role_arn:
            return self._session.client("iam", region_name=region)
        assume_args: dict[str, Any] = {"RoleArn": settings.role_arn, "RoleSessionName": ROLE_SESSION_NAME}
        if settings.external_id:
            assume_args["ExternalId"] = settings.external_id
        credentials = self._session.client("sts", region_name=region).assume_role(**assume_args)["Credentials"]
        return self._session.client(
            "iam",
            region_name=region,
            aws_access_key_id=credentials["AccessKeyId"],
            aws_secret_access_key=credentials["SecretAccessKey"],
            aws_session_token=credentials["SessionToken"],
        )

    async def _client(self, account: str) -> Any:
        async with self._lock:
            if account not in self._clients:
                self._clients[account] = await self._call("assume_role", self._build_client, account=account)
                LOGGER.debug("AWS IAM client ready", account=account)
            return self._clients[account]

    async def create_oidc_provider(
        self, account: str, url: str, client_ids: Sequence[str], thumbprints: Sequence[str]
    ) -> str:
        iam = await self._client(account)
        host = urlparse(url).netloc or url
        listing = await self._call("list_open_id_connect_providers", iam.list_open_id_connect_providers)
        for entry in listing.get("OpenIDConnectProviderList", []):
            if entry["Arn"].endswith(f"oidc-provider/{host}"):
                return entry["Arn"]
        created = await self._call(
            "create_open_id_connect_provider",
            iam.create_open_id_connect_provider,
            Url=url,
            ClientIDList=list(client_ids),
            ThumbprintList=list(thumbprints),
        )
        return created["OpenIDConnectProviderArn"]

    async def create_role(
        self, account: str, name: str, trust_policy: dict[str, Any], description: str, tags: Mapping[str, str]
    ) -> str:
        iam = await self._client(account)
        document = json.dumps(trust_policy)
        tag_list = [{"Key": key, "Value": value} for key, value in sorted(tags.items())]
        try:
            existing = await asyncio.to_thread(iam.get_role, RoleName=name)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") != "NoSuchEntity":
                raise BackendError("aws", "get_role", str(exc)) from exc
            existing = None
        except BotoCoreError as exc:
            raise BackendError("aws", "get_role", str(exc)) from exc

        if existing is None:
            created = await self._call(
                "create_role",
                iam.create_role,
                RoleName=name,
                AssumeRolePolicyDocument=document,
                Description=description,
                Tags=tag_list,
            )
            return created["Role"]["Arn"]

        await self._call(
            "update_assume_role_policy", iam.update_assume_role_policy, RoleName=name, PolicyDocument=document
        )
        await self._call("update_role", iam.update_role, RoleName=name, Description=description)
        if tag_list:
            await self._call("tag_role", iam.tag_role, RoleName=name, Tags=tag_list)
        return existing["Role"]["Arn"]

    async def put_role_policy(self, account: str, role: str, name: str, document: dict[str, Any]) -> None:
        iam = await self._client(account)
        await self._call(
            "put_role_policy",
            iam.put_role_policy,
            RoleName=role,
            PolicyName=name,
            PolicyDocument=json.dumps(document),
        )
