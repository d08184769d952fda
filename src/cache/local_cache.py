"""Device-scoped local cache.

A best-effort mirror of a subset of Record Store state, kept in Redis under
a per-device key scope:

- accounts the service has resolved, so callers stay identifiable
- a client's connected practitioner and active connection
- a practitioner's roster
- the practitioner code index
- the journal of writes that could not be confirmed against the store

Nothing here is authoritative. Mirror writes never raise; the journal is the
only part whose loss matters, so journal_write reports whether it stuck.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError

from cache.redis_client import RedisClient
from domain.entities import Account, Connection, utc_now

logger = logging.getLogger(__name__)


class PendingWriteKind(str, Enum):
    """Writes that can be queued for replay."""
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    CODE_REQUEST = "code_request"


class PendingWrite(BaseModel):
    """A journaled write awaiting confirmation by the reconciler."""
    write_id: str = Field(default_factory=lambda: str(uuid4()))
    kind: PendingWriteKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    queued_at: datetime = Field(default_factory=utc_now)
    attempts: int = 0
    last_error: Optional[str] = None


class LocalCache:
    """
    Typed mirror and journal operations over RedisClient.

    Usage:
        cache = LocalCache(redis_client, device_id="tablet-7")
        await cache.mirror_connection("client-1", connection)
        cached = await cache.get_connection("client-1")
    """

    JOURNAL = "journal"

    def __init__(self, client: RedisClient, device_id: str = "default"):
        self._client = client
        self.device_id = device_id

    @property
    def is_available(self) -> bool:
        return self._client.is_connected

    def _key(self, *parts: str) -> str:
        return ":".join(("device", self.device_id) + parts)

    # Accounts

    async def mirror_account(self, account: Account) -> None:
        await self._client.set(self._key("account", account.account_id), account.to_dict())

    async def get_account(self, account_id: str) -> Optional[Account]:
        data = await self._client.get(self._key("account", account_id))
        return self._parse(Account, data)

    # Client pointer and active connection

    async def mirror_connection(self, client_id: str, connection: Optional[Connection]) -> None:
        """Shadow a client's active connection, or clear it when None."""
        if connection is None:
            await self._client.delete(self._key("client", client_id, "practitioner"))
            await self._client.delete(self._key("client", client_id, "connection"))
            return

        await self._client.set(
            self._key("client", client_id, "practitioner"), connection.practitioner_id
        )
        await self._client.set(
            self._key("client", client_id, "connection"), connection.to_dict()
        )

    async def get_client_practitioner(self, client_id: str) -> Optional[str]:
        value = await self._client.get(self._key("client", client_id, "practitioner"))
        return value if isinstance(value, str) else None

    async def get_connection(self, client_id: str) -> Optional[Connection]:
        data = await self._client.get(self._key("client", client_id, "connection"))
        return self._parse(Connection, data)

    # Rosters

    async def mirror_roster(self, practitioner_id: str, clients: List[Account]) -> None:
        """Overwrite the cached roster with the canonical one."""
        await self._client.set(
            self._key("practitioner", practitioner_id, "roster"),
            [account.to_dict() for account in clients],
        )

    async def get_roster(self, practitioner_id: str) -> Optional[List[Account]]:
        """Cached roster, or None when nothing was ever mirrored."""
        data = await self._client.get(self._key("practitioner", practitioner_id, "roster"))
        if not isinstance(data, list):
            return None

        roster = []
        for item in data:
            account = self._parse(Account, item)
            if account is not None:
                roster.append(account)
        return roster

    # Practitioner code index

    async def mirror_practitioner_code(self, code: str, practitioner: Account) -> None:
        await self._client.set(self._key("code", code), practitioner.to_dict())

    async def forget_practitioner_code(self, code: str) -> None:
        await self._client.delete(self._key("code", code))

    async def get_practitioner_by_code(self, code: str) -> Optional[Account]:
        data = await self._client.get(self._key("code", code))
        return self._parse(Account, data)

    # Journal of unconfirmed writes

    async def journal_write(
        self, kind: PendingWriteKind, payload: Dict[str, Any]
    ) -> Optional[PendingWrite]:
        """
        Queue a write for replay.

        Returns:
            The queued entry, or None if the cache could not store it.
        """
        entry = PendingWrite(kind=kind, payload=payload)
        stored = await self._client.hset(
            self._key(self.JOURNAL), entry.write_id, entry.model_dump(mode="json")
        )
        if not stored:
            logger.error(f"Could not journal {kind.value} write: local cache unavailable")
            return None

        logger.info(f"Journaled unconfirmed {kind.value} write {entry.write_id}")
        return entry

    async def pending_writes(self) -> List[PendingWrite]:
        """Journaled writes, oldest first."""
        raw = await self._client.hgetall(self._key(self.JOURNAL))
        entries = []
        for write_id, data in raw.items():
            entry = self._parse(PendingWrite, data)
            if entry is None:
                logger.warning(f"Dropping unreadable journal entry {write_id}")
                await self._client.hdel(self._key(self.JOURNAL), write_id)
                continue
            entries.append(entry)
        return sorted(entries, key=lambda e: e.queued_at)

    async def update_write(self, entry: PendingWrite) -> None:
        await self._client.hset(
            self._key(self.JOURNAL), entry.write_id, entry.model_dump(mode="json")
        )

    async def discard_write(self, write_id: str) -> None:
        await self._client.hdel(self._key(self.JOURNAL), write_id)

    @staticmethod
    def _parse(model, data):
        if not isinstance(data, dict):
            return None
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed cached {model.__name__}: {e}")
            return None
