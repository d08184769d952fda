"""Async Client Invite Repository Implementation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import ClientInvite, InviteStatus
from domain.repositories import IClientInviteRepository
from database.models import ClientInviteRecord

logger = logging.getLogger(__name__)


class ClientInviteRepository(IClientInviteRepository):
    """Async implementation of IClientInviteRepository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, invite: ClientInvite) -> None:
        self._session.add(ClientInviteRecord(**invite.model_dump()))
        await self._session.flush()
        logger.debug(f"Added invite {invite.invite_id} for practitioner {invite.practitioner_id}")

    async def get(self, invite_id: str) -> Optional[ClientInvite]:
        query = (
            select(ClientInviteRecord)
            .where(ClientInviteRecord.invite_id == invite_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        record = result.scalar_one_or_none()
        return self._to_entity(record) if record else None

    async def find_by_contact(self, client_contact: str) -> List[ClientInvite]:
        query = (
            select(ClientInviteRecord)
            .where(ClientInviteRecord.client_contact == client_contact)
            .order_by(ClientInviteRecord.created_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return [self._to_entity(record) for record in result.scalars().all()]

    async def mark_accepted(self, invite_id: str, client_id: str, accepted_at: datetime) -> bool:
        stmt = (
            update(ClientInviteRecord)
            .where(ClientInviteRecord.invite_id == invite_id)
            .where(ClientInviteRecord.status == InviteStatus.PENDING)
            .values(status=InviteStatus.ACCEPTED, accepted_by=client_id, accepted_at=accepted_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_expired(self, invite_id: str) -> bool:
        stmt = (
            update(ClientInviteRecord)
            .where(ClientInviteRecord.invite_id == invite_id)
            .where(ClientInviteRecord.status == InviteStatus.PENDING)
            .values(status=InviteStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def expire_stale(self, now: datetime) -> int:
        stmt = (
            update(ClientInviteRecord)
            .where(ClientInviteRecord.status == InviteStatus.PENDING)
            .where(ClientInviteRecord.expires_at <= now)
            .values(status=InviteStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def list_for_practitioner(
        self, practitioner_id: str, status: Optional[InviteStatus] = None
    ) -> List[ClientInvite]:
        query = select(ClientInviteRecord).where(ClientInviteRecord.practitioner_id == practitioner_id)
        if status is not None:
            query = query.where(ClientInviteRecord.status == status)
        query = query.order_by(ClientInviteRecord.created_at.desc())

        result = await self._session.execute(query.execution_options(populate_existing=True))
        return [self._to_entity(record) for record in result.scalars().all()]

    @staticmethod
    def _to_entity(record: ClientInviteRecord) -> ClientInvite:
        return ClientInvite.model_validate(record, from_attributes=True)
