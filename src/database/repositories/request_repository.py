"""Async Connection Request Repository Implementation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import ConnectionRequest, RequestPath, RequestStatus
from domain.repositories import IConnectionRequestRepository
from database.models import ConnectionRequestRecord

logger = logging.getLogger(__name__)


class ConnectionRequestRepository(IConnectionRequestRepository):
    """Async implementation of IConnectionRequestRepository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, request: ConnectionRequest) -> None:
        self._session.add(ConnectionRequestRecord(**request.model_dump()))
        await self._session.flush()
        logger.debug(
            f"Added {request.path.value} request {request.request_id} "
            f"({request.status.value})"
        )

    async def get(self, request_id: str) -> Optional[ConnectionRequest]:
        query = (
            select(ConnectionRequestRecord)
            .where(ConnectionRequestRecord.request_id == request_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        record = result.scalar_one_or_none()
        return self._to_entity(record) if record else None

    async def find_pending_code_request(
        self, client_id: str, practitioner_id: str
    ) -> Optional[ConnectionRequest]:
        query = (
            select(ConnectionRequestRecord)
            .where(ConnectionRequestRecord.client_id == client_id)
            .where(ConnectionRequestRecord.practitioner_id == practitioner_id)
            .where(ConnectionRequestRecord.path == RequestPath.PRACTITIONER_CODE)
            .where(ConnectionRequestRecord.status == RequestStatus.PENDING)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        record = result.scalars().first()
        return self._to_entity(record) if record else None

    async def latest_questionnaire_request(self, client_id: str) -> Optional[ConnectionRequest]:
        query = (
            select(ConnectionRequestRecord)
            .where(ConnectionRequestRecord.client_id == client_id)
            .where(ConnectionRequestRecord.path == RequestPath.QUESTIONNAIRE)
            .order_by(ConnectionRequestRecord.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        record = result.scalars().first()
        return self._to_entity(record) if record else None

    async def list_pending_for_practitioner(self, practitioner_id: str) -> List[ConnectionRequest]:
        query = (
            select(ConnectionRequestRecord)
            .where(ConnectionRequestRecord.practitioner_id == practitioner_id)
            .where(ConnectionRequestRecord.status == RequestStatus.PENDING)
            .order_by(ConnectionRequestRecord.created_at)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return [self._to_entity(record) for record in result.scalars().all()]

    async def list_for_client(self, client_id: str) -> List[ConnectionRequest]:
        query = (
            select(ConnectionRequestRecord)
            .where(ConnectionRequestRecord.client_id == client_id)
            .order_by(ConnectionRequestRecord.created_at)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return [self._to_entity(record) for record in result.scalars().all()]

    async def transition(
        self,
        request_id: str,
        *,
        from_status: RequestStatus,
        to_status: RequestStatus,
        practitioner_id: Optional[str] = None,
        declined_by: Optional[List[str]] = None,
        decided_at: Optional[datetime] = None,
    ) -> bool:
        values = {"status": to_status}
        if practitioner_id is not None:
            values["practitioner_id"] = practitioner_id
        if declined_by is not None:
            values["declined_by"] = list(declined_by)
        if decided_at is not None:
            values["decided_at"] = decided_at

        stmt = (
            update(ConnectionRequestRecord)
            .where(ConnectionRequestRecord.request_id == request_id)
            .where(ConnectionRequestRecord.status == from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def _to_entity(record: ConnectionRequestRecord) -> ConnectionRequest:
        return ConnectionRequest.model_validate(record, from_attributes=True)
