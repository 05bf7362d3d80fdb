from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from ..models import Snapshot
from ..parser import SnapshotParseError, parse_stats

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """A single poll of the statistics endpoint failed."""


class StatsFetcher:
    """Retrieves and decodes the nginx-rtmp statistics page."""

    def __init__(
        self,
        endpoint: str,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def fetch(self) -> Snapshot:
        client = self._get_client()
        try:
            # per-phase httpx timeouts do not cap a body that trickles in
            async with asyncio.timeout(self.timeout_seconds):
                response = await client.get(self.endpoint, timeout=self.timeout_seconds)
            response.raise_for_status()
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise FetchError(
                f"Timed out after {self.timeout_seconds}s fetching {self.endpoint}"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                f"{self.endpoint} answered with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to fetch {self.endpoint}: {exc}") from exc

        try:
            return parse_stats(response.content)
        except SnapshotParseError as exc:
            raise FetchError(f"Failed to parse statistics from {self.endpoint}: {exc}") from exc

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
