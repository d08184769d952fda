"""Async Connection Repository Implementation.

Connections are an append-only audit trail: rows are inserted ACTIVE and
later closed, never deleted.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import Connection, ConnectionStatus
from domain.repositories import IConnectionRepository
from database.models import ConnectionRecord

logger = logging.getLogger(__name__)


class ConnectionRepository(IConnectionRepository):
    """Async implementation of IConnectionRepository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, connection: Connection) -> None:
        """
        Insert a connection row.

        Raises:
            sqlalchemy.exc.IntegrityError: if the client already has an
                ACTIVE row (partial unique index).
        """
        self._session.add(ConnectionRecord(**connection.model_dump()))
        await self._session.flush()
        logger.debug(
            f"Added connection {connection.connection_id}: "
            f"{connection.client_id} -> {connection.practitioner_id}"
        )

    async def get_active(self, client_id: str) -> Optional[Connection]:
        query = (
            select(ConnectionRecord)
            .where(ConnectionRecord.client_id == client_id)
            .where(ConnectionRecord.status == ConnectionStatus.ACTIVE)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        record = result.scalar_one_or_none()
        return self._to_entity(record) if record else None

    async def end(
        self,
        connection_id: str,
        status: ConnectionStatus,
        *,
        ended_at: datetime,
        reason: Optional[str] = None,
        previous_practitioner_id: Optional[str] = None,
    ) -> bool:
        values = {"status": status, "ended_at": ended_at, "reason": reason}
        if previous_practitioner_id is not None:
            values["previous_practitioner_id"] = previous_practitioner_id

        stmt = (
            update(ConnectionRecord)
            .where(ConnectionRecord.connection_id == connection_id)
            .where(ConnectionRecord.status == ConnectionStatus.ACTIVE)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def history(self, client_id: str) -> List[Connection]:
        query = (
            select(ConnectionRecord)
            .where(ConnectionRecord.client_id == client_id)
            .order_by(ConnectionRecord.created_at, ConnectionRecord.connection_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return [self._to_entity(record) for record in result.scalars().all()]

    @staticmethod
    def _to_entity(record: ConnectionRecord) -> Connection:
        return Connection.model_validate(record, from_attributes=True)
