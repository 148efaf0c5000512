"""
HTTP ingestion sink.

Posts each batch as one JSON document to an analytics ingestion endpoint:

    {
        "events": [...],
        "metadata": {"app_version": "...", "environment": "...", "timestamp": ...}
    }
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Sequence

import aiohttp

from mesh_insights.sinks.base import DeliveryError, Sink
from mesh_insights.telemetry.events import Event
from mesh_insights.utils.async_helpers import async_retry

logger = logging.getLogger(__name__)

_SUCCESS_STATUSES = (200, 201, 202, 204)


class HttpSink(Sink):
    """POSTs batches to an ingestion URL with a short in-call retry."""

    def __init__(
        self,
        endpoint_url: str,
        headers: Optional[Dict[str, str]] = None,
        environment: str = "production",
        app_version: str = "",
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the sink.

        Args:
            endpoint_url: Ingestion URL
            headers: Extra request headers (auth tokens etc.)
            environment: Reported in the payload metadata
            app_version: Reported in the payload metadata
            timeout: Per-request timeout in seconds
            session: Optional externally managed client session
        """
        self.endpoint_url = endpoint_url
        self.headers = headers or {}
        self.environment = environment
        self.app_version = app_version
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    def build_payload(self, batch: Sequence[Event]) -> Dict[str, Any]:
        return {
            "events": [event.to_dict() for event in batch],
            "metadata": {
                "app_version": self.app_version,
                "environment": self.environment,
                "timestamp": time.time(),
                "event_count": len(batch),
            },
        }

    async def deliver(self, batch: Sequence[Event]) -> None:
        if not batch:
            return
        try:
            await self._post(self.build_payload(batch))
        except DeliveryError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DeliveryError(
                f"POST {self.endpoint_url} failed: {e}",
                batch_size=len(batch),
                cause=e,
            ) from e

    @async_retry(attempts=2, delay=0.5, exceptions=(aiohttp.ClientConnectionError,))
    async def _post(self, payload: Dict[str, Any]) -> None:
        session = await self._get_session()
        async with session.post(self.endpoint_url, json=payload, headers=self.headers) as response:
            if response.status not in _SUCCESS_STATUSES:
                body = await response.text()
                raise DeliveryError(
                    f"Ingestion endpoint returned {response.status}: {body[:200]}",
                    batch_size=payload["metadata"]["event_count"],
                )
        logger.debug(f"[HttpSink] Delivered {payload['metadata']['event_count']} events")

    async def close(self) -> None:
        """Close the HTTP session if this sink created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
