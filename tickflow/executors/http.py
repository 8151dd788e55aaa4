"""HTTP executor backend: invokes remote functions by name."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..errors import ExecutorInvocationError
from .base import ExecutorBackend

logger = logging.getLogger(__name__)


class HttpExecutorBackend(ExecutorBackend):
    """POST the payload to ``{base_url}/{name}`` and return the JSON body.

    A non-2xx status, a transport failure, a non-JSON body or a body carrying
    an ``error`` key are all reported as ``ExecutorInvocationError``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def connect(self) -> None:
        if self._client is None:
            # the step executor bounds each call with its own timeout
            self._client = httpx.AsyncClient(timeout=None)
            self._owns_client = True

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def invoke(self, name: str, payload: dict[str, Any]) -> Any:
        if self._client is None:
            await self.connect()
        url = f"{self.base_url}/{name}"
        try:
            response = await self._client.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            raise ExecutorInvocationError(f"Error invoking '{name}': {e}") from e

        try:
            body = response.json()
        except ValueError:
            # covers invalid JSON and bodies that are not valid UTF-8
            body = None

        if response.is_error:
            detail = body.get("error") if isinstance(body, dict) else response.text
            raise ExecutorInvocationError(
                f"Executor '{name}' returned {response.status_code}: {detail}"
            )
        if body is None:
            raise ExecutorInvocationError(f"Executor '{name}' returned a non-JSON body")
        if isinstance(body, dict) and body.get("error"):
            raise ExecutorInvocationError(f"Executor '{name}' reported: {body['error']}")
        logger.debug(f"Executor '{name}' responded with status {response.status_code}")
        return body
