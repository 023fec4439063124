"""Delivery deduplication keyed on X-GitHub-Delivery."""

from __future__ import annotations

import logging

from .config import settings
from .errors import DuplicateDeliveryError
from .store import KeyValueStore

logger = logging.getLogger(__name__)


class DeliveryDeduplicator:
    """Lets exactly one request per delivery id past the gate within the TTL."""

    def __init__(self, store: KeyValueStore, *, ttl_seconds: int | None = None) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds or settings.dedup_ttl_seconds

    @staticmethod
    def key_for(delivery_id: str) -> str:
        return f"delivery:github:{delivery_id}"

    async def claim(self, delivery_id: str) -> bool:
        """Return True for the first claim of a delivery id, False for repeats."""
        claimed = await self.store.set_if_absent(self.key_for(delivery_id), "1", self.ttl_seconds)
        if not claimed:
            logger.info("Delivery %s already processed", delivery_id)
        return claimed

    async def release(self, delivery_id: str) -> None:
        """Forget a claim so a provider retry of the same delivery can proceed."""
        await self.store.delete(self.key_for(delivery_id))

    async def seen(self, delivery_id: str) -> bool:
        return await self.store.exists(self.key_for(delivery_id))

    async def acquire(self, delivery_id: str) -> None:
        """Claim a delivery id, raising DuplicateDeliveryError if it was already claimed."""
        if not await self.claim(delivery_id):
            raise DuplicateDeliveryError(delivery_id)
