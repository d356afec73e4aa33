from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import httpx
from loguru import logger

from ..errors import SinkErrorKind, map_http_status
from ..pipeline.types import SinkResult


class PostgrestSink:
    """Sink for a PostgREST-style analytics store (Supabase and similar).

    Each insert is ``POST {base_url}/rest/v1/{destination}`` with a JSON array
    body. HTTP failures are returned as classified SinkResults; only
    programming errors escape.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        schema_path: str = "/rest/v1",
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }
        self._path = schema_path.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, headers=headers
        )
        if client is not None:
            self._client.headers.update(headers)

    async def __aenter__(self) -> "PostgrestSink":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def insert(self, destination: str, rows: Sequence[Mapping[str, Any]]) -> SinkResult:
        try:
            resp = await self._client.post(f"{self._path}/{destination}", json=list(rows))
        except httpx.TimeoutException as exc:
            return SinkResult.failure(SinkErrorKind.TRANSIENT, f"timeout: {exc}")
        except httpx.TransportError as exc:
            return SinkResult.failure(SinkErrorKind.TRANSIENT, f"{type(exc).__name__}: {exc}")

        kind = map_http_status(resp.status_code)
        if kind is None:
            return SinkResult.success()
        logger.debug(f"Insert into {destination} rejected: status={resp.status_code}")
        return SinkResult.failure(kind, f"HTTP {resp.status_code}: {resp.text[:200]}")
