"""
Attach a resolved location to one contact entry.

The store only supports whole-document writes, so every apply() is a
read-modify-write of the owner's full contact list. Writes for the same
owner are serialized in two layers: an asyncio lock queues coroutines of
this process, and the store lock excludes other processes (the API
appending contacts while a worker applies locations).
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager

from app.features.location_enrichment.domain import Location
from app.features.location_enrichment.repository.contact_repository import (
    ContactDocumentStore,
    RedisContactStore,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ContactLocationWriter:
    """Applies locations to contact entries addressed by owner and index."""

    def __init__(self, store: ContactDocumentStore | None = None):
        self.store = store or RedisContactStore()
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._waiters: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def owner_lock(self, owner_id: str):
        """Single-flight section for one owner's document across processes."""
        self._waiters[owner_id] += 1
        try:
            async with self._locks[owner_id], self.store.lock(owner_id):
                yield
        finally:
            self._waiters[owner_id] -= 1
            if self._waiters[owner_id] == 0:
                del self._waiters[owner_id]
                self._locks.pop(owner_id, None)

    async def apply(self, owner_id: str, contact_index: int, location: Location) -> bool:
        """
        Write ``location`` onto ``contactList[contact_index]``.

        Returns False (no-op) when the document is missing or the index is out
        of range; those cases are logged and not retried. Store errors
        propagate to the caller.
        """
        async with self.owner_lock(owner_id):
            document = await self.store.get(owner_id)
            if document is None:
                logger.warning("Contact document not found", owner_id=owner_id)
                return False

            contact_list = document.get("contactList") or []
            if not isinstance(contact_list, list) or not (0 <= contact_index < len(contact_list)):
                logger.warning(
                    "Invalid contact index",
                    owner_id=owner_id,
                    contact_index=contact_index,
                    list_length=len(contact_list) if isinstance(contact_list, list) else None,
                )
                return False

            entry = contact_list[contact_index]
            if not isinstance(entry, dict):
                logger.warning(
                    "Contact entry has unexpected shape",
                    owner_id=owner_id,
                    contact_index=contact_index,
                )
                return False

            if entry.get("location"):
                logger.info(
                    "Overwriting existing contact location",
                    owner_id=owner_id,
                    contact_index=contact_index,
                )

            entry["location"] = location.to_dict()
            document["contactList"] = contact_list
            await self.store.set(owner_id, document)

        logger.info(
            "Updated contact with location data",
            owner_id=owner_id,
            contact_index=contact_index,
            provider=location.provider,
        )
        return True
