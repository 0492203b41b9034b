"""One federated identity per target, shared by every repository using it."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Iterable, TypeVar

import structlog

from ..common.errors import FederationError, format_event

LOGGER = structlog.get_logger("repoaccess.core.federation")

HandleT = TypeVar("HandleT")


class FederationDeduplicator(Generic[HandleT]):
    """Memoise federated identity creation per target.

    The first call to :meth:`ensure` for a target schedules the creation; later
    calls await the same task. :meth:`ensure_all` is the barrier a provider
    pass crosses before binding any service identity.
    """

    def __init__(self, provider: str, create: Callable[[str], Awaitable[HandleT]]) -> None:
        self._provider = provider
        self._create = create
        self._tasks: dict[str, asyncio.Task[HandleT]] = {}

    @property
    def targets(self) -> list[str]:
        return list(self._tasks)

    async def _create_one(self, target: str) -> HandleT:
        LOGGER.info(format_event(self._provider, "federation", "creating federated identity", target))
        try:
            return await self._create(target)
        except FederationError:
            raise
        except Exception as exc:
            LOGGER.error(
                format_event(self._provider, "federation", "error creating federated identity", target),
                error=str(exc),
            )
            raise FederationError(
                self._provider, "federation", f"error creating federated identity ({exc})", target
            ) from exc

    async def ensure(self, target: str) -> HandleT:
        task = self._tasks.get(target)
        if task is None:
            task = asyncio.ensure_future(self._create_one(target))
            self._tasks[target] = task
        return await task

    async def ensure_all(self, targets: Iterable[str]) -> dict[str, HandleT]:
        unique = list(dict.fromkeys(targets))
        results = await asyncio.gather(*(self.ensure(target) for target in unique), return_exceptions=True)
        handles: dict[str, HandleT] = {}
        failure = None
        for target, result in zip(unique, results):
            if isinstance(result, BaseException):
                failure = failure or result
                continue
            handles[target] = result
        if failure is not None:
            raise failure
        return handles

    def handle(self, target: str) -> HandleT:
        """Return the resolved handle; only valid after the barrier."""

        task = self._tasks.get(target)
        if task is None or not task.done() or task.cancelled() or task.exception() is not None:
            raise FederationError(self._provider, "federation", "federated identity is not available", target)
        return task.result()
