"""Tests for Unit of Work and the compare-and-set repository operations."""

import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.repositories import AccountRepository
from database.unit_of_work import UnitOfWork, UnitOfWorkFactory
from domain.entities import (
    Account,
    AccountRole,
    Connection,
    ConnectionStatus,
    PractitionerStatus,
    utc_now,
)
from domain.event_bus import get_event_bus
from domain.events import ConnectionCreated


def practitioner(account_id, **fields):
    return Account(
        account_id=account_id,
        role=AccountRole.PRACTITIONER,
        practitioner_status=PractitionerStatus.APPROVED,
        **fields,
    )


def connection_created(client_id="c1", practitioner_id="p1"):
    return ConnectionCreated(
        aggregate_id="conn-1",
        actor_id=client_id,
        client_id=client_id,
        practitioner_id=practitioner_id,
        origin="direct",
    )


class TestUnitOfWork:
    """Tests for UnitOfWork class."""

    def test_init_without_session(self):
        uow = UnitOfWork()
        assert uow._session is None
        assert uow._owns_session is True
        assert uow._committed is False
        assert uow._pending_events == []

    def test_init_with_session(self):
        mock_session = MagicMock(spec=AsyncSession)
        uow = UnitOfWork(session=mock_session)
        assert uow.session is mock_session
        assert uow._owns_session is False

    def test_repositories_raise_if_not_initialized(self):
        uow = UnitOfWork()
        with pytest.raises(RuntimeError, match="UnitOfWork not initialized"):
            _ = uow.accounts

    def test_repositories_are_lazy_and_cached(self):
        uow = UnitOfWork(session=MagicMock(spec=AsyncSession))
        assert uow._accounts is None
        repo = uow.accounts
        assert isinstance(repo, AccountRepository)
        assert uow.accounts is repo

    @pytest.mark.asyncio
    async def test_commits_on_clean_exit(self, session_factory):
        factory = UnitOfWorkFactory(session_factory)

        async with factory() as uow:
            await uow.accounts.add(Account(account_id="c1", role=AccountRole.CLIENT))

        async with factory() as uow:
            assert await uow.accounts.get("c1") is not None

    @pytest.mark.asyncio
    async def test_rolls_back_on_exception(self, session_factory):
        factory = UnitOfWorkFactory(session_factory)

        with pytest.raises(ValueError):
            async with factory() as uow:
                await uow.accounts.add(Account(account_id="c1", role=AccountRole.CLIENT))
                raise ValueError("abort")

        async with factory() as uow:
            assert await uow.accounts.get("c1") is None

    @pytest.mark.asyncio
    async def test_events_published_after_commit(self, session_factory):
        published = []
        get_event_bus().subscribe(ConnectionCreated, published.append)

        async with UnitOfWork(session_factory=session_factory) as uow:
            uow.collect_event(connection_created())
            assert published == []

        assert len(published) == 1
        assert published[0].client_id == "c1"

    @pytest.mark.asyncio
    async def test_events_discarded_on_rollback(self, session_factory):
        published = []
        get_event_bus().subscribe(ConnectionCreated, published.append)

        with pytest.raises(ValueError):
            async with UnitOfWork(session_factory=session_factory) as uow:
                uow.collect_event(connection_created())
                raise ValueError("abort")

        assert published == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_undo_commit(self, session_factory):
        def broken(event):
            raise RuntimeError("handler failed")

        get_event_bus().subscribe(ConnectionCreated, broken)

        async with UnitOfWork(session_factory=session_factory) as uow:
            await uow.accounts.add(Account(account_id="c1", role=AccountRole.CLIENT))
            uow.collect_event(connection_created())

        async with UnitOfWork(session_factory=session_factory) as uow:
            assert await uow.accounts.get("c1") is not None


class TestCompareAndSet:
    """Conditional updates report whether the expected state still held."""

    @pytest.mark.asyncio
    async def test_pointer_claim_release_swap(self, session_factory):
        async with UnitOfWork(session_factory=session_factory) as uow:
            for account_id in ("p1", "p2", "p3"):
                await uow.accounts.add(practitioner(account_id))
            await uow.accounts.add(Account(account_id="c1", role=AccountRole.CLIENT))

            assert await uow.accounts.claim_practitioner("c1", "p1") is True
            assert await uow.accounts.claim_practitioner("c1", "p2") is False

            assert await uow.accounts.swap_practitioner("c1", "p2", "p3") is False
            assert await uow.accounts.swap_practitioner("c1", "p1", "p3") is True

            assert await uow.accounts.release_practitioner("c1", "p1") is False
            assert await uow.accounts.release_practitioner("c1", "p3") is True
            assert (await uow.accounts.get("c1")).connected_practitioner_id is None

    @pytest.mark.asyncio
    async def test_rotation_cursor(self, session_factory):
        async with UnitOfWork(session_factory=session_factory) as uow:
            await uow.accounts.add(practitioner("p1", rotation_cursor=3))

            assert await uow.accounts.advance_rotation_cursor("p1", 2) is False
            assert await uow.accounts.advance_rotation_cursor("p1", 3) is True
            assert (await uow.accounts.get("p1")).rotation_cursor == 4

    @pytest.mark.asyncio
    async def test_status_change_requires_expected_status(self, session_factory):
        async with UnitOfWork(session_factory=session_factory) as uow:
            await uow.accounts.add(Account(
                account_id="p1",
                role=AccountRole.PRACTITIONER,
                practitioner_status=PractitionerStatus.PENDING,
            ))

            assert not await uow.accounts.set_practitioner_status(
                "p1", PractitionerStatus.SUSPENDED, expected_status=PractitionerStatus.APPROVED
            )
            assert await uow.accounts.set_practitioner_status(
                "p1", PractitionerStatus.APPROVED, expected_status=PractitionerStatus.PENDING
            )

    @pytest.mark.asyncio
    async def test_one_active_connection_per_client(self, session_factory):
        with pytest.raises(IntegrityError):
            async with UnitOfWork(session_factory=session_factory) as uow:
                await uow.accounts.add(practitioner("p1"))
                await uow.accounts.add(practitioner("p2"))
                await uow.accounts.add(Account(account_id="c1", role=AccountRole.CLIENT))
                await uow.connections.add(
                    Connection(connection_id="conn-1", client_id="c1", practitioner_id="p1")
                )
                await uow.connections.add(
                    Connection(connection_id="conn-2", client_id="c1", practitioner_id="p2")
                )

    @pytest.mark.asyncio
    async def test_ended_connections_stay_in_history(self, session_factory):
        async with UnitOfWork(session_factory=session_factory) as uow:
            await uow.accounts.add(practitioner("p1"))
            await uow.accounts.add(practitioner("p2"))
            await uow.accounts.add(Account(account_id="c1", role=AccountRole.CLIENT))
            await uow.connections.add(
                Connection(connection_id="conn-1", client_id="c1", practitioner_id="p1")
            )
            assert await uow.connections.end(
                "conn-1", ConnectionStatus.DISCONNECTED, ended_at=utc_now(), reason="client_disconnected"
            )
            await uow.connections.add(
                Connection(connection_id="conn-2", client_id="c1", practitioner_id="p2")
            )

            history = await uow.connections.history("c1")

        assert [c.connection_id for c in history] == ["conn-1", "conn-2"]
        assert history[0].status == ConnectionStatus.DISCONNECTED
        assert history[1].is_active
