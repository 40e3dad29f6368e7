"""
Repository helpers for owner contact documents.

Each owner has one document, ``{"contactList": [...]}``, stored as a JSON
string under ``contacts:{owner_id}``. Only whole-document get/set is
offered; partial updates are not supported by the store. Callers doing a
read-modify-write hold ``lock(owner_id)``, a Redis lock at
``contacts:lock:{owner_id}``, so the API and worker processes never
interleave on the same document.
"""

import json
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

CONTACT_KEY_PREFIX = "contacts"
CONTACT_LOCK_PREFIX = "contacts:lock"


class ContactStoreError(Exception):
    """Raised when a contact document cannot be read or written."""

    def __init__(self, message: str, owner_id: str | None = None):
        super().__init__(message)
        self.owner_id = owner_id


class ContactDocumentStore(Protocol):
    async def get(self, owner_id: str) -> dict[str, Any] | None: ...

    async def set(self, owner_id: str, document: dict[str, Any]) -> None: ...

    def lock(self, owner_id: str) -> AbstractAsyncContextManager[None]:
        """Exclusive section over one owner's document, shared by every process."""
        ...


def _contact_key(owner_id: str) -> str:
    return f"{CONTACT_KEY_PREFIX}:{owner_id}"


def _lock_key(owner_id: str) -> str:
    return f"{CONTACT_LOCK_PREFIX}:{owner_id}"


class RedisContactStore:
    """Contact documents persisted as JSON strings in Redis."""

    def __init__(self, redis_client: FastRedisClient | None = None):
        self.redis = redis_client or fast_redis

    async def get(self, owner_id: str) -> dict[str, Any] | None:
        try:
            raw = await self.redis.get_or_raise(_contact_key(owner_id))
        except Exception as e:
            raise ContactStoreError(
                f"Failed to read contact document: {e}", owner_id=owner_id
            ) from e

        if raw is None:
            return None

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ContactStoreError("Contact document is not valid JSON", owner_id=owner_id) from e

        if not isinstance(document, dict):
            raise ContactStoreError("Contact document has unexpected shape", owner_id=owner_id)
        return document

    async def set(self, owner_id: str, document: dict[str, Any]) -> None:
        try:
            await self.redis.set_or_raise(_contact_key(owner_id), json.dumps(document))
        except Exception as e:
            raise ContactStoreError(
                f"Failed to write contact document: {e}", owner_id=owner_id
            ) from e

        logger.debug(
            "Contact document written",
            owner_id=owner_id,
            contact_count=len(document.get("contactList") or []),
        )

    @asynccontextmanager
    async def lock(self, owner_id: str) -> AsyncIterator[None]:
        try:
            held = await self.redis.acquire_lock(
                _lock_key(owner_id),
                timeout=settings.CONTACT_LOCK_TIMEOUT_SECONDS,
                blocking_timeout=settings.CONTACT_LOCK_WAIT_SECONDS,
            )
        except Exception as e:
            raise ContactStoreError(
                f"Failed to lock contact document: {e}", owner_id=owner_id
            ) from e

        try:
            yield
        finally:
            await self.redis.release_lock(held)


async def append_contact(
    store: ContactDocumentStore, owner_id: str, contact: dict[str, Any]
) -> int:
    """
    Append one entry to the owner's list and return its positional index.

    Callers hold ``store.lock(owner_id)`` so the index stays valid against
    concurrent writers.
    """
    document = await store.get(owner_id) or {}
    contact_list = list(document.get("contactList") or [])
    contact_list.append(contact)
    document["contactList"] = contact_list
    await store.set(owner_id, document)
    return len(contact_list) - 1
