"""Async Practitioner Application Repository Implementation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import ApplicationStatus, PractitionerApplication
from domain.repositories import IPractitionerApplicationRepository
from database.models import PractitionerApplicationRecord

logger = logging.getLogger(__name__)


class PractitionerApplicationRepository(IPractitionerApplicationRepository):
    """Async implementation of IPractitionerApplicationRepository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, application: PractitionerApplication) -> None:
        self._session.add(PractitionerApplicationRecord(**application.model_dump()))
        await self._session.flush()
        logger.debug(f"Added application {application.application_id} for {application.account_id}")

    async def get(self, application_id: str) -> Optional[PractitionerApplication]:
        query = (
            select(PractitionerApplicationRecord)
            .where(PractitionerApplicationRecord.application_id == application_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        record = result.scalar_one_or_none()
        return self._to_entity(record) if record else None

    async def find_pending_for_account(self, account_id: str) -> Optional[PractitionerApplication]:
        query = (
            select(PractitionerApplicationRecord)
            .where(PractitionerApplicationRecord.account_id == account_id)
            .where(PractitionerApplicationRecord.status == ApplicationStatus.PENDING)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        record = result.scalars().first()
        return self._to_entity(record) if record else None

    async def list_applications(
        self, status: Optional[ApplicationStatus] = None
    ) -> List[PractitionerApplication]:
        query = select(PractitionerApplicationRecord)
        if status is not None:
            query = query.where(PractitionerApplicationRecord.status == status)
        query = query.order_by(PractitionerApplicationRecord.created_at)

        result = await self._session.execute(query.execution_options(populate_existing=True))
        return [self._to_entity(record) for record in result.scalars().all()]

    async def review(
        self,
        application_id: str,
        status: ApplicationStatus,
        *,
        reviewed_by: str,
        reviewed_at: datetime,
        note: Optional[str] = None,
    ) -> bool:
        stmt = (
            update(PractitionerApplicationRecord)
            .where(PractitionerApplicationRecord.application_id == application_id)
            .where(PractitionerApplicationRecord.status == ApplicationStatus.PENDING)
            .values(status=status, reviewed_by=reviewed_by, reviewed_at=reviewed_at, review_note=note)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def _to_entity(record: PractitionerApplicationRecord) -> PractitionerApplication:
        return PractitionerApplication.model_validate(record, from_attributes=True)
