"""
Tests for the connection manager.

Covers:
- connect / disconnect round trips and the append-only history
- at most one active link per client under concurrent connects
- pointer and active row agreeing after every operation
- journaling to the local cache when the Record Store is unreachable
- stale reads served from the cache
- retries after a commit that was never acknowledged
"""

import asyncio

import pytest

from database.unit_of_work import UnitOfWorkFactory
from domain.entities import ConnectionOrigin, ConnectionStatus, LinkReason, PractitionerStatus
from linking.connection_manager import ConnectionManager
from linking.errors import (
    AlreadyConnected,
    NotFound,
    PractitionerUnavailable,
    StoreUnavailable,
    Unconfirmed,
)
from linking.record_store import ReadSource, RecordStore


async def assert_consistent(store, client_id):
    """The client's pointer names exactly the practitioner of its active row."""
    account = await store.read(lambda uow: uow.accounts.get(client_id))
    active = await store.read(lambda uow: uow.connections.get_active(client_id))
    if active is None:
        assert account.connected_practitioner_id is None
    else:
        assert account.connected_practitioner_id == active.practitioner_id


class TestConnect:
    """Tests for ConnectionManager.connect."""

    @pytest.mark.asyncio
    async def test_connect_links_client(self, linking, seed, store):
        await seed.client("c1")
        await seed.practitioner("p1")

        connection = await linking.connections.connect("c1", "p1")

        assert connection.status == ConnectionStatus.ACTIVE
        assert connection.origin == ConnectionOrigin.DIRECT
        assert await linking.connections.is_connected("c1", "p1")
        assert (await seed.account("c1")).connected_practitioner_id == "p1"
        await assert_consistent(store, "c1")

    @pytest.mark.asyncio
    async def test_connect_when_already_linked_fails(self, linking, seed, store):
        await seed.client("c1")
        await seed.practitioner("p1")
        await seed.practitioner("p2")
        await linking.connections.connect("c1", "p1")

        with pytest.raises(AlreadyConnected):
            await linking.connections.connect("c1", "p2")

        assert await linking.connections.is_connected("c1", "p1")
        assert not await linking.connections.is_connected("c1", "p2")
        await assert_consistent(store, "c1")

    @pytest.mark.asyncio
    async def test_connect_unknown_parties(self, linking, seed):
        await seed.client("c1")
        await seed.practitioner("p1")

        with pytest.raises(NotFound):
            await linking.connections.connect("nobody", "p1")
        with pytest.raises(NotFound):
            await linking.connections.connect("c1", "nobody")

    @pytest.mark.asyncio
    async def test_connect_to_practitioner_as_client_fails(self, linking, seed):
        await seed.practitioner("p1")
        await seed.practitioner("p2")

        with pytest.raises(NotFound):
            await linking.connections.connect("p1", "p2")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [
        PractitionerStatus.PENDING,
        PractitionerStatus.SUSPENDED,
        PractitionerStatus.FRAUD,
        PractitionerStatus.DELETED,
    ])
    async def test_connect_to_unapproved_practitioner_fails(self, linking, seed, store, status):
        await seed.client("c1")
        await seed.practitioner("p1", status=status)

        with pytest.raises(PractitionerUnavailable):
            await linking.connections.connect("c1", "p1")

        assert (await seed.account("c1")).connected_practitioner_id is None

    @pytest.mark.asyncio
    async def test_concurrent_connects_only_one_wins(self, linking, seed, store):
        await seed.client("c1")
        await seed.practitioner("p1")
        await seed.practitioner("p2")

        results = await asyncio.gather(
            linking.connections.connect("c1", "p1"),
            linking.connections.connect("c1", "p2"),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], AlreadyConnected)

        history = await linking.connections.connection_history("c1")
        assert [c.status for c in history] == [ConnectionStatus.ACTIVE]
        assert history[0].practitioner_id == winners[0].practitioner_id
        await assert_consistent(store, "c1")


class TestDisconnect:
    """Tests for ConnectionManager.disconnect."""

    @pytest.mark.asyncio
    async def test_round_trip_keeps_history(self, linking, seed, store):
        await seed.client("c1")
        await seed.practitioner("p1")
        await seed.practitioner("p2")

        await linking.connections.connect("c1", "p1")
        assert await linking.connections.disconnect("c1") is True
        await linking.connections.connect("c1", "p2")

        history = await linking.connections.connection_history("c1")
        assert [(c.practitioner_id, c.status) for c in history] == [
            ("p1", ConnectionStatus.DISCONNECTED),
            ("p2", ConnectionStatus.ACTIVE),
        ]
        assert history[0].ended_at is not None
        assert history[0].reason == LinkReason.CLIENT_DISCONNECTED.value
        await assert_consistent(store, "c1")

    @pytest.mark.asyncio
    async def test_disconnect_without_link_is_noop(self, linking, seed):
        await seed.client("c1")

        assert await linking.connections.disconnect("c1") is False
        assert await linking.connections.connection_history("c1") == []

    @pytest.mark.asyncio
    async def test_disconnect_unknown_client(self, linking):
        with pytest.raises(NotFound):
            await linking.connections.disconnect("nobody")

    @pytest.mark.asyncio
    async def test_roster_follows_links(self, linking, seed):
        await seed.practitioner("p1")
        for client_id in ("c1", "c2", "c3"):
            await seed.client(client_id)
            await linking.connections.connect(client_id, "p1")
        await linking.connections.disconnect("c2")

        roster = await linking.connections.list_connected_clients("p1")

        assert [a.account_id for a in roster] == ["c1", "c3"]


class TestMigrate:
    """Tests for ConnectionManager.migrate."""

    @pytest.mark.asyncio
    async def test_migrate_records_provenance(self, linking, seed, store):
        await seed.client("c1")
        await seed.practitioner("p1")
        await seed.practitioner("p2")
        await linking.connections.connect("c1", "p1")

        moved = await linking.connections.migrate(
            "c1", "p1", "p2", LinkReason.PRACTITIONER_DELETED, actor_id="admin-1"
        )

        assert moved.origin == ConnectionOrigin.REASSIGNMENT
        assert moved.previous_practitioner_id == "p1"
        assert moved.reason == LinkReason.PRACTITIONER_DELETED.value

        old, new = await linking.connections.connection_history("c1")
        assert old.status == ConnectionStatus.REASSIGNED
        assert old.previous_practitioner_id == "p1"
        assert old.reason == LinkReason.PRACTITIONER_DELETED.value
        assert new.connection_id == moved.connection_id
        await assert_consistent(store, "c1")

    @pytest.mark.asyncio
    async def test_migrate_from_wrong_practitioner_fails(self, linking, seed):
        await seed.client("c1")
        await seed.practitioner("p1")
        await seed.practitioner("p2")
        await seed.practitioner("p3")
        await linking.connections.connect("c1", "p1")

        with pytest.raises(NotFound):
            await linking.connections.migrate("c1", "p2", "p3", LinkReason.PRACTITIONER_DELETED)

        assert await linking.connections.is_connected("c1", "p1")

    @pytest.mark.asyncio
    async def test_migrate_to_unapproved_practitioner_fails(self, linking, seed):
        await seed.client("c1")
        await seed.practitioner("p1")
        await seed.practitioner("p2", status=PractitionerStatus.SUSPENDED)
        await linking.connections.connect("c1", "p1")

        with pytest.raises(PractitionerUnavailable):
            await linking.connections.migrate("c1", "p1", "p2", LinkReason.PRACTITIONER_DELETED)


class TestStoreUnavailable:
    """Degraded behaviour while the Record Store is unreachable."""

    @pytest.mark.asyncio
    async def test_connect_is_journaled(self, linking, seed, store, cache):
        await seed.client("c1")
        await seed.practitioner("p1")
        store.offline = True

        with pytest.raises(Unconfirmed) as exc_info:
            await linking.connections.connect("c1", "p1")

        pending = await cache.pending_writes()
        assert [p.write_id for p in pending] == [exc_info.value.pending_write_id]
        assert pending[0].payload["practitioner_id"] == "p1"
        assert await cache.get_client_practitioner("c1") == "p1"

    @pytest.mark.asyncio
    async def test_connect_without_cache_raises_store_unavailable(self, store, seed):
        await seed.client("c1")
        await seed.practitioner("p1")
        store.offline = True

        with pytest.raises(StoreUnavailable):
            await ConnectionManager(store).connect("c1", "p1")

    @pytest.mark.asyncio
    async def test_journal_failure_surfaces_store_unavailable(
        self, linking, seed, store, fake_redis
    ):
        await seed.client("c1")
        await seed.practitioner("p1")
        store.offline = True
        fake_redis.fail = True

        with pytest.raises(StoreUnavailable):
            await linking.connections.connect("c1", "p1")

    @pytest.mark.asyncio
    async def test_disconnect_is_journaled(self, linking, seed, store, cache):
        await seed.client("c1")
        await seed.practitioner("p1")
        await linking.connections.connect("c1", "p1")
        store.offline = True

        with pytest.raises(Unconfirmed):
            await linking.connections.disconnect("c1")

        assert await cache.get_connection("c1") is None
        store.offline = False
        assert await linking.connections.is_connected("c1", "p1")

    @pytest.mark.asyncio
    async def test_lookup_falls_back_to_cache(self, linking, seed, store):
        await seed.client("c1")
        await seed.practitioner("p1")
        connection = await linking.connections.connect("c1", "p1")
        store.offline = True

        result = await linking.connections.lookup_connection("c1")

        assert result.stale is True
        assert result.source == ReadSource.LOCAL_CACHE
        assert result.value.connection_id == connection.connection_id

    @pytest.mark.asyncio
    async def test_roster_falls_back_to_cache(self, linking, seed, store):
        await seed.practitioner("p1")
        await seed.client("c1")
        await linking.connections.connect("c1", "p1")
        await linking.connections.list_connected_clients("p1")
        store.offline = True

        result = await linking.connections.lookup_roster("p1")

        assert result.stale is True
        assert [a.account_id for a in result.value] == ["c1"]

    @pytest.mark.asyncio
    async def test_lookup_from_store_is_fresh(self, linking, seed):
        await seed.client("c1")

        result = await linking.connections.lookup_connection("c1")

        assert result.value is None
        assert result.stale is False
        assert result.to_dict() == {"data": None, "stale": False, "source": "record_store"}


class LostAckRecordStore(RecordStore):
    """Commits the first transaction, then reports the connection as dropped."""

    dropped = 0

    async def _in_transaction(self, operation):
        result = await super()._in_transaction(operation)
        if not self.dropped:
            self.dropped += 1
            raise ConnectionResetError("connection reset after commit")
        return result


class TestRetryAfterLostAck:
    """A write retried after its commit went unacknowledged reports success."""

    @pytest.fixture
    def lossy_store(self, session_factory, resilience_settings):
        return LostAckRecordStore(UnitOfWorkFactory(session_factory), settings=resilience_settings)

    @pytest.mark.asyncio
    async def test_connect_returns_the_committed_link(self, lossy_store, seed, store):
        await seed.practitioner("p1")
        await seed.client("c1")

        connection = await ConnectionManager(lossy_store).write_connect("c1", "p1")

        assert lossy_store.dropped == 1
        assert connection.practitioner_id == "p1"
        history = await store.read(lambda uow: uow.connections.history(client_id="c1"))
        assert [c.connection_id for c in history] == [connection.connection_id]
        await assert_consistent(store, "c1")

    @pytest.mark.asyncio
    async def test_connect_to_someone_else_still_conflicts(self, lossy_store, seed, store):
        await seed.practitioner("p1")
        await seed.practitioner("p2")
        await seed.client("c1")
        await ConnectionManager(store).connect("c1", "p1")

        with pytest.raises(AlreadyConnected):
            await ConnectionManager(lossy_store).write_connect("c1", "p2")

    @pytest.mark.asyncio
    async def test_disconnect_reports_the_committed_end(self, lossy_store, seed, store):
        await seed.practitioner("p1")
        await seed.client("c1")
        await ConnectionManager(store).connect("c1", "p1")

        ended = await ConnectionManager(lossy_store).write_disconnect("c1")

        assert lossy_store.dropped == 1
        assert ended is True
        assert await store.read(lambda uow: uow.connections.get_active("c1")) is None
        await assert_consistent(store, "c1")
