"""Unit of Work Pattern Implementation.

Coordinates the repositories inside a single Record Store transaction and
publishes collected domain events once that transaction commits.
"""

from __future__ import annotations

import logging
from typing import Optional, List

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from domain.repositories import (
    IUnitOfWork,
    IAccountRepository,
    IConnectionRepository,
    IConnectionRequestRepository,
    IClientInviteRepository,
    IPractitionerApplicationRepository,
)
from domain.events import DomainEvent
from database.async_engine import get_async_session_factory
from database.repositories import (
    AccountRepository,
    ConnectionRepository,
    ConnectionRequestRepository,
    ClientInviteRepository,
    PractitionerApplicationRepository,
)

logger = logging.getLogger(__name__)


class UnitOfWork(IUnitOfWork):
    """
    Unit of Work implementation using SQLAlchemy async sessions.

    Usage:
        async with UnitOfWork() as uow:
            claimed = await uow.accounts.claim_practitioner(client_id, practitioner_id)
            await uow.connections.add(connection)
            # Auto-commits on clean exit

    The context manager automatically handles:
    - Creating a database session
    - Committing on clean exit
    - Rolling back on exception
    - Closing the session
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        """
        Initialize the unit of work.

        Args:
            session: Optional existing session. If None, one is created on enter.
            session_factory: Factory used when no session is given. Defaults
                to the global factory.
        """
        self._session: Optional[AsyncSession] = session
        self._session_factory = session_factory
        self._owns_session: bool = session is None
        self._committed: bool = False

        self._accounts: Optional[AccountRepository] = None
        self._connections: Optional[ConnectionRepository] = None
        self._requests: Optional[ConnectionRequestRepository] = None
        self._invites: Optional[ClientInviteRepository] = None
        self._applications: Optional[PractitionerApplicationRepository] = None

        self._pending_events: List[DomainEvent] = []

    @property
    def session(self) -> AsyncSession:
        """Get the underlying session."""
        if self._session is None:
            raise RuntimeError("UnitOfWork not initialized. Use 'async with' context.")
        return self._session

    @property
    def accounts(self) -> IAccountRepository:
        if self._accounts is None:
            self._accounts = AccountRepository(self.session)
        return self._accounts

    @property
    def connections(self) -> IConnectionRepository:
        if self._connections is None:
            self._connections = ConnectionRepository(self.session)
        return self._connections

    @property
    def requests(self) -> IConnectionRequestRepository:
        if self._requests is None:
            self._requests = ConnectionRequestRepository(self.session)
        return self._requests

    @property
    def invites(self) -> IClientInviteRepository:
        if self._invites is None:
            self._invites = ClientInviteRepository(self.session)
        return self._invites

    @property
    def applications(self) -> IPractitionerApplicationRepository:
        if self._applications is None:
            self._applications = PractitionerApplicationRepository(self.session)
        return self._applications

    def collect_event(self, event: DomainEvent) -> None:
        """
        Collect a domain event for publishing after commit.

        Args:
            event: Domain event to publish.
        """
        self._pending_events.append(event)

    def collect_events(self, events: List[DomainEvent]) -> None:
        self._pending_events.extend(events)

    async def commit(self) -> None:
        """
        Commit the transaction, then publish collected domain events.
        """
        if self._session is None:
            raise RuntimeError("UnitOfWork not initialized")

        if self._committed:
            return

        await self._session.commit()
        self._committed = True
        logger.debug("UnitOfWork committed")

        self._publish_events()

    async def rollback(self) -> None:
        """
        Rollback all changes.

        Discards all pending changes and clears collected events.
        """
        if self._session is None:
            return

        await self._session.rollback()
        self._pending_events.clear()
        logger.debug("UnitOfWork rolled back")

    def _publish_events(self) -> None:
        if not self._pending_events:
            return

        from domain.event_bus import publish_event

        events, self._pending_events = self._pending_events, []
        for event in events:
            try:
                publish_event(event)
            except Exception as e:
                logger.error(f"Failed to publish event {event.__class__.__name__}: {e}")

    async def __aenter__(self) -> "UnitOfWork":
        if self._session is None:
            session_factory = self._session_factory or get_async_session_factory()
            self._session = session_factory()
            self._owns_session = True

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """
        Exit the async context.

        Commits if no exception, rolls back otherwise.
        Always closes the session if we own it.
        """
        try:
            if exc_type is not None:
                await self.rollback()
                logger.debug(f"UnitOfWork rolled back due to: {exc_type.__name__}")
            elif not self._committed:
                await self.commit()
        finally:
            if self._owns_session and self._session is not None:
                await self._session.close()
                self._session = None


class UnitOfWorkFactory:
    """
    Factory for creating unit of work instances bound to one session factory.

    Useful for dependency injection in services and tests.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    def __call__(self) -> UnitOfWork:
        return UnitOfWork(session_factory=self._session_factory)
