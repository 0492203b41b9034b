from __future__ import annotations

import asyncio

import pytest

from repoaccess.common.errors import FederationError
from repoaccess.core.federation import FederationDeduplicator


class CountingFactory:
    def __init__(self, fail_on: str | None = None) -> None:
        self.calls: list[str] = []
        self.fail_on = fail_on

    async def __call__(self, target: str) -> str:
        self.calls.append(target)
        await asyncio.sleep(0)
        if target == self.fail_on:
            raise RuntimeError("quota exceeded")
        return f"identity-{target}"


@pytest.mark.asyncio
async def test_concurrent_ensure_creates_once_per_target():
    factory = CountingFactory()
    federation = FederationDeduplicator("aws", factory)

    results = await asyncio.gather(*(federation.ensure("111111111111") for _ in range(5)))

    assert results == ["identity-111111111111"] * 5
    assert factory.calls == ["111111111111"]


@pytest.mark.asyncio
async def test_ensure_all_deduplicates_targets():
    factory = CountingFactory()
    federation = FederationDeduplicator("google", factory)

    handles = await federation.ensure_all(["proj-a", "proj-b", "proj-a", "proj-b", "proj-a"])

    assert handles == {"proj-a": "identity-proj-a", "proj-b": "identity-proj-b"}
    assert sorted(factory.calls) == ["proj-a", "proj-b"]
    assert federation.targets == ["proj-a", "proj-b"]
    assert federation.handle("proj-b") == "identity-proj-b"


@pytest.mark.asyncio
async def test_ensure_all_raises_federation_error_after_all_targets_settle():
    factory = CountingFactory(fail_on="proj-b")
    federation = FederationDeduplicator("google", factory)

    with pytest.raises(FederationError) as exc_info:
        await federation.ensure_all(["proj-a", "proj-b"])

    assert exc_info.value.target == "proj-b"
    assert str(exc_info.value).startswith("[google][federation] error creating federated identity (quota exceeded)")
    assert federation.handle("proj-a") == "identity-proj-a"
    with pytest.raises(FederationError):
        federation.handle("proj-b")


@pytest.mark.asyncio
async def test_handle_before_barrier_is_an_error():
    federation = FederationDeduplicator("aws", CountingFactory())

    with pytest.raises(FederationError) as exc_info:
        federation.handle("111111111111")

    assert "federated identity is not available" in str(exc_info.value)


@pytest.mark.asyncio
async def test_federation_error_from_factory_is_not_wrapped():
    async def factory(target: str) -> str:
        raise FederationError("scaleway", "project", "no project id configured", target)

    federation = FederationDeduplicator("scaleway", factory)

    with pytest.raises(FederationError) as exc_info:
        await federation.ensure("missing")

    assert exc_info.value.stage == "project"
