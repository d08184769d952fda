"""
Connection Manager.

Sole writer of the client -> practitioner pointer and of Connection rows.
Every link change, whatever path requested it, ends up in one of the
``*_in`` coroutines below, which run inside the caller's unit of work:

- connect_in:    pointer NULL -> practitioner, new ACTIVE row
- disconnect_in: ACTIVE row -> DISCONNECTED, pointer -> NULL
- migrate_in:    pointer from -> to, old row REASSIGNED, new ACTIVE row

The pointer is always moved with a compare-and-set UPDATE before any
Connection row is touched, so two concurrent writers for the same client
serialise on the account row and exactly one of them wins.

After a confirmed write the local cache is refreshed best-effort. When the
Record Store is unreachable, connect and disconnect are journaled locally
and the caller gets Unconfirmed.
"""

import logging
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from cache.local_cache import LocalCache, PendingWriteKind
from database.unit_of_work import UnitOfWork
from domain.entities import (
    Account,
    Connection,
    ConnectionOrigin,
    ConnectionStatus,
    LinkReason,
    utc_now,
)
from domain.events import ConnectionCreated, ConnectionEnded, ConnectionReassigned

from .errors import (
    AlreadyConnected,
    NotFound,
    PractitionerUnavailable,
    StoreUnavailable,
    Unconfirmed,
)
from .record_store import ReadResult, ReadSource, RecordStore

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Owns the single-valued client -> practitioner link.

    Args:
        store: Record Store gateway.
        cache: Device-local mirror and journal. Optional; without it reads
            never degrade and writes never journal.
    """

    def __init__(self, store: RecordStore, cache: Optional[LocalCache] = None):
        self._store = store
        self._cache = cache

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def connect(
        self,
        client_id: str,
        practitioner_id: str,
        *,
        origin: ConnectionOrigin = ConnectionOrigin.DIRECT,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Connection:
        """
        Link a client to an approved practitioner.

        Raises:
            NotFound: Unknown client or practitioner.
            PractitionerUnavailable: The practitioner is not approved.
            AlreadyConnected: The client already has an active link.
            Unconfirmed: The store was unreachable and the write was journaled.
            StoreUnavailable: The store was unreachable and journaling failed.
        """
        try:
            return await self.write_connect(
                client_id, practitioner_id, origin=origin, reason=reason, actor_id=actor_id
            )
        except StoreUnavailable as e:
            entry = await self._journal(
                PendingWriteKind.CONNECT,
                {
                    "client_id": client_id,
                    "practitioner_id": practitioner_id,
                    "origin": origin.value,
                    "reason": reason,
                },
            )
            if entry is None:
                raise
            provisional = Connection(
                connection_id=f"pending-{entry.write_id}",
                client_id=client_id,
                practitioner_id=practitioner_id,
                origin=origin,
                reason=reason,
            )
            await self.mirror_connection(client_id, provisional)
            raise Unconfirmed(
                f"Connect {client_id} -> {practitioner_id} queued until the store is reachable",
                entry.write_id,
            ) from e

    async def disconnect(self, client_id: str, *, actor_id: Optional[str] = None) -> bool:
        """
        End the client's active link.

        Returns:
            True if a link was ended, False if there was none.
        """
        try:
            return await self.write_disconnect(client_id, actor_id=actor_id)
        except StoreUnavailable as e:
            entry = await self._journal(PendingWriteKind.DISCONNECT, {"client_id": client_id})
            if entry is None:
                raise
            await self.mirror_connection(client_id, None)
            raise Unconfirmed(
                f"Disconnect of {client_id} queued until the store is reachable",
                entry.write_id,
            ) from e

    async def write_connect(
        self,
        client_id: str,
        practitioner_id: str,
        *,
        origin: ConnectionOrigin = ConnectionOrigin.DIRECT,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Connection:
        """
        Store-only connect: never journals. Used directly by replay.

        A retry whose earlier attempt committed without acknowledgement finds
        the link already in place; that link is returned instead of
        AlreadyConnected.
        """
        attempts = 0

        async def operation(uow: UnitOfWork) -> Connection:
            nonlocal attempts
            attempts += 1
            try:
                return await self.connect_in(
                    uow, client_id, practitioner_id, origin=origin, reason=reason, actor_id=actor_id
                )
            except AlreadyConnected:
                if attempts == 1:
                    raise
                active = await uow.connections.get_active(client_id)
                if active is None or active.practitioner_id != practitioner_id:
                    raise
                logger.info(f"Connect {client_id} -> {practitioner_id} landed on an earlier attempt")
                return active

        connection = await self._store.write(operation, name="connect")
        await self.mirror_connection(client_id, connection)
        return connection

    async def write_disconnect(self, client_id: str, *, actor_id: Optional[str] = None) -> bool:
        """
        Store-only disconnect: never journals. Used directly by replay.

        A retry after an attempt that ended the link reports True even when
        that attempt's commit was never acknowledged.
        """
        ended_earlier = False

        async def operation(uow: UnitOfWork) -> bool:
            nonlocal ended_earlier
            ended = await self.disconnect_in(uow, client_id, actor_id=actor_id)
            if ended is None:
                return ended_earlier
            ended_earlier = True
            return True

        ended = await self._store.write(operation, name="disconnect")
        await self.mirror_connection(client_id, None)
        return ended

    async def is_connected(self, client_id: str, practitioner_id: str) -> bool:
        active = await self._store.read(
            lambda uow: uow.connections.get_active(client_id), name="is_connected"
        )
        return active is not None and active.practitioner_id == practitioner_id

    async def get_active_connection(self, client_id: str) -> Optional[Connection]:
        """Canonical active link for a client. Refreshes the cache."""
        active = await self._store.read(
            lambda uow: uow.connections.get_active(client_id), name="get_active_connection"
        )
        await self.mirror_connection(client_id, active)
        return active

    async def list_connected_clients(self, practitioner_id: str) -> List[Account]:
        """Canonical roster of a practitioner. Refreshes the cache."""
        roster = await self._store.read(
            lambda uow: uow.accounts.list_connected_clients(practitioner_id),
            name="list_connected_clients",
        )
        await self._mirror_roster(practitioner_id, roster)
        return roster

    async def connection_history(self, client_id: str) -> List[Connection]:
        """Every link the client ever had, oldest first."""
        return await self._store.read(
            lambda uow: uow.connections.history(client_id), name="connection_history"
        )

    async def lookup_connection(self, client_id: str) -> ReadResult[Optional[Connection]]:
        """Active link, falling back to the local mirror when the store is down."""
        try:
            return ReadResult(await self.get_active_connection(client_id))
        except StoreUnavailable:
            if self._cache is None:
                raise
            logger.warning(f"Serving cached connection for {client_id}: store unavailable")
            cached = await self._cache.get_connection(client_id)
            return ReadResult(cached, stale=True, source=ReadSource.LOCAL_CACHE)

    async def lookup_roster(self, practitioner_id: str) -> ReadResult[List[Account]]:
        """Roster, falling back to the local mirror when the store is down."""
        try:
            return ReadResult(await self.list_connected_clients(practitioner_id))
        except StoreUnavailable:
            if self._cache is None:
                raise
            logger.warning(f"Serving cached roster for {practitioner_id}: store unavailable")
            cached = await self._cache.get_roster(practitioner_id)
            return ReadResult(cached or [], stale=True, source=ReadSource.LOCAL_CACHE)

    async def migrate(
        self,
        client_id: str,
        from_practitioner_id: str,
        to_practitioner_id: str,
        reason: LinkReason,
        *,
        actor_id: Optional[str] = None,
    ) -> Connection:
        """Move one client between practitioners in its own transaction."""
        connection = await self._store.write(
            lambda uow: self.migrate_in(
                uow,
                client_id,
                from_practitioner_id,
                to_practitioner_id,
                reason,
                actor_id=actor_id,
            ),
            name="migrate",
        )
        await self.mirror_connection(client_id, connection)
        return connection

    # -------------------------------------------------------------------------
    # Transactional building blocks
    # -------------------------------------------------------------------------

    async def connect_in(
        self,
        uow: UnitOfWork,
        client_id: str,
        practitioner_id: str,
        *,
        origin: ConnectionOrigin = ConnectionOrigin.DIRECT,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Connection:
        client = await uow.accounts.get(client_id)
        if client is None or not client.is_client:
            raise NotFound(f"Client {client_id} not found")

        practitioner = await uow.accounts.get(practitioner_id)
        if practitioner is None or not practitioner.is_practitioner:
            raise NotFound(f"Practitioner {practitioner_id} not found")
        if not practitioner.is_approved:
            raise PractitionerUnavailable(
                f"Practitioner {practitioner_id} is not accepting clients",
                {"status": practitioner.practitioner_status.value if practitioner.practitioner_status else None},
            )

        if not await uow.accounts.claim_practitioner(client_id, practitioner_id):
            raise self._already_connected(client_id)

        connection = Connection(
            connection_id=str(uuid4()),
            client_id=client_id,
            practitioner_id=practitioner_id,
            origin=origin,
            reason=reason,
        )
        try:
            await uow.connections.add(connection)
        except IntegrityError as e:
            raise self._already_connected(client_id) from e

        uow.collect_event(ConnectionCreated(
            aggregate_id=connection.connection_id,
            actor_id=actor_id or client_id,
            client_id=client_id,
            practitioner_id=practitioner_id,
            origin=origin.value,
        ))
        logger.info(f"Connected {client_id} -> {practitioner_id} ({origin.value})")
        return connection

    async def disconnect_in(
        self,
        uow: UnitOfWork,
        client_id: str,
        *,
        reason: LinkReason = LinkReason.CLIENT_DISCONNECTED,
        actor_id: Optional[str] = None,
    ) -> Optional[Connection]:
        """Returns the ended connection, or None if there was nothing to end."""
        client = await uow.accounts.get(client_id)
        if client is None or not client.is_client:
            raise NotFound(f"Client {client_id} not found")

        active = await uow.connections.get_active(client_id)
        if active is None:
            return None

        ended = await uow.connections.end(
            active.connection_id,
            ConnectionStatus.DISCONNECTED,
            ended_at=utc_now(),
            reason=reason.value,
        )
        if not ended:
            # Someone else ended it between our read and the update
            return None

        await uow.accounts.release_practitioner(client_id, active.practitioner_id)
        uow.collect_event(ConnectionEnded(
            aggregate_id=active.connection_id,
            actor_id=actor_id or client_id,
            client_id=client_id,
            practitioner_id=active.practitioner_id,
            reason=reason.value,
        ))
        logger.info(f"Disconnected {client_id} from {active.practitioner_id}")
        return active

    async def migrate_in(
        self,
        uow: UnitOfWork,
        client_id: str,
        from_practitioner_id: str,
        to_practitioner_id: str,
        reason: LinkReason,
        *,
        actor_id: Optional[str] = None,
    ) -> Connection:
        """
        Atomically move a client from one practitioner to another.

        Both the ended and the new connection carry the previous practitioner
        and the reason, so either row alone explains the move.
        """
        target = await uow.accounts.get(to_practitioner_id)
        if target is None or not target.is_approved:
            raise PractitionerUnavailable(f"Practitioner {to_practitioner_id} is not accepting clients")

        if not await uow.accounts.swap_practitioner(client_id, from_practitioner_id, to_practitioner_id):
            raise NotFound(f"Client {client_id} is no longer connected to {from_practitioner_id}")

        active = await uow.connections.get_active(client_id)
        if active is None or active.practitioner_id != from_practitioner_id:
            raise NotFound(f"Client {client_id} has no active connection to {from_practitioner_id}")

        now = utc_now()
        await uow.connections.end(
            active.connection_id,
            ConnectionStatus.REASSIGNED,
            ended_at=now,
            reason=reason.value,
            previous_practitioner_id=from_practitioner_id,
        )

        connection = Connection(
            connection_id=str(uuid4()),
            client_id=client_id,
            practitioner_id=to_practitioner_id,
            origin=ConnectionOrigin.REASSIGNMENT,
            created_at=now,
            previous_practitioner_id=from_practitioner_id,
            reason=reason.value,
        )
        await uow.connections.add(connection)

        uow.collect_event(ConnectionReassigned(
            aggregate_id=connection.connection_id,
            actor_id=actor_id,
            client_id=client_id,
            previous_practitioner_id=from_practitioner_id,
            practitioner_id=to_practitioner_id,
            reason=reason.value,
        ))
        logger.info(
            f"Reassigned {client_id}: {from_practitioner_id} -> {to_practitioner_id} ({reason.value})"
        )
        return connection

    # -------------------------------------------------------------------------
    # Cache helpers
    # -------------------------------------------------------------------------

    async def mirror_connection(self, client_id: str, connection: Optional[Connection]) -> None:
        """Best-effort cache refresh; never fails the caller."""
        if self._cache is None:
            return
        try:
            await self._cache.mirror_connection(client_id, connection)
        except Exception as e:
            logger.warning(f"Could not mirror connection for {client_id}: {e}")

    async def _mirror_roster(self, practitioner_id: str, roster: List[Account]) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.mirror_roster(practitioner_id, roster)
        except Exception as e:
            logger.warning(f"Could not mirror roster for {practitioner_id}: {e}")

    async def _journal(self, kind: PendingWriteKind, payload: dict):
        if self._cache is None:
            return None
        return await self._cache.journal_write(kind, payload)

    @staticmethod
    def _already_connected(client_id: str) -> AlreadyConnected:
        return AlreadyConnected(f"Client {client_id} already has an active connection")
