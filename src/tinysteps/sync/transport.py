"""
Remote transport — the narrow seam between the sync engine and the network.

The engine only needs ``async send(item) -> bool``. True means the remote
accepted the item; False (or any exception, or a timeout) is an item
failure and the item stays queued for the next pass.
"""
import logging
from typing import Optional, Protocol

import httpx

from tinysteps.models.snapshot import SnapshotItem
from tinysteps.models.sync import SyncItem

logger = logging.getLogger(__name__)


class SyncTransport(Protocol):
    async def send(self, item: SyncItem) -> bool:
        ...


class HttpTransport:
    """POSTs each queued item as JSON to ``<base_url>/sync/items``."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """
        Args:
            base_url: Remote root, e.g. "https://api.example.com".
            client: Pre-built AsyncClient (tests pass one with a MockTransport).
            timeout: Per-request timeout used when building our own client.
        """
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, item: SyncItem) -> bool:
        body = SnapshotItem.from_sync_item(item).model_dump(mode="json", by_alias=True)
        try:
            resp = await self._client.post(f"{self.base_url}/sync/items", json=body)
        except httpx.HTTPError as exc:
            logger.warning("Transport error for item %s: %s", item.id, exc)
            return False
        if resp.is_success:
            return True
        logger.warning("Remote rejected item %s with HTTP %d", item.id, resp.status_code)
        return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
