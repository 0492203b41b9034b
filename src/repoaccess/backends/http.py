"""Shared JSON-over-HTTP plumbing for the live backends."""

from __future__ import annotations

from typing import Any, Iterable, Optional

import httpx
import structlog

from ..common.errors import BackendError

LOGGER = structlog.get_logger("repoaccess.backends.http")


class JsonApi:
    """Thin wrapper translating transport and status errors into :class:`BackendError`."""

    service = "http"

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def _headers(self) -> dict[str, str]:
        return {}

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        missing: Iterable[int] = (),
        **kwargs: Any,
    ) -> Optional[Any]:
        """Send a request; return the decoded body, ``{}`` when empty, ``None`` on a ``missing`` status."""

        url = self._url(path)
        operation = f"{method} {path}"
        headers = {**await self._headers(), **kwargs.pop("headers", {})}
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise BackendError(self.service, operation, str(exc)) from exc

        if response.status_code in set(missing):
            return None
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            LOGGER.debug("Request failed", service=self.service, operation=operation, status=response.status_code)
            raise BackendError(
                self.service, operation, f"status {response.status_code}: {response.text[:300]}"
            ) from exc
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()
