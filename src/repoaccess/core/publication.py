"""Publication of provider secret records into repository mounts."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Mapping, Optional

import structlog

from ..common.errors import PublicationError, format_event

if TYPE_CHECKING:
    from ..providers.base import SecretStore

LOGGER = structlog.get_logger("repoaccess.core.publication")


def _canonical(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


class SecretPublisher:
    """Write secret records so that an unchanged payload is never rewritten."""

    def __init__(self, store: SecretStore) -> None:
        self._store = store
        self.writes = 0
        self.skipped = 0

    async def publish(
        self,
        mount: Optional[str],
        key: str,
        payload: Mapping[str, Any],
        *,
        provider: Optional[str] = None,
    ) -> bool:
        """Publish ``payload`` under ``key``; return whether a write happened.

        Failures are logged and raised as :class:`PublicationError` to the
        caller only.
        """

        provider = provider or key
        if not mount:
            LOGGER.warning(format_event(provider, "secret", "no secret mount for record", key))
            self.skipped += 1
            return False

        try:
            current = await self._store.read(mount, key)
            if current is not None and _canonical(current) == _canonical(payload):
                LOGGER.debug(format_event(provider, "secret", "secret record unchanged", f"{mount}/{key}"))
                self.skipped += 1
                return False
            await self._store.write(mount, key, dict(payload))
        except Exception as exc:
            LOGGER.error(
                format_event(provider, "secret", "error writing secret record", f"{mount}/{key}"),
                error=str(exc),
            )
            raise PublicationError(
                provider, "secret", f"error writing secret record ({exc})", f"{mount}/{key}"
            ) from exc

        self.writes += 1
        LOGGER.info(format_event(provider, "secret", "secret record written", f"{mount}/{key}"))
        return True
