"""Async Account Repository Implementation.

Implements IAccountRepository using SQLAlchemy async sessions.

The connected-practitioner pointer and the rotation cursor are only ever
changed with conditional UPDATEs; the returned rowcount tells the caller
whether its expectation about the row still held.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import Account, AccountRole, PractitionerStatus, utc_now
from domain.repositories import IAccountRepository
from database.models import AccountRecord

logger = logging.getLogger(__name__)


class AccountRepository(IAccountRepository):
    """Async implementation of IAccountRepository."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository with a session.

        Args:
            session: SQLAlchemy async session.
        """
        self._session = session

    async def get(self, account_id: str) -> Optional[Account]:
        query = (
            select(AccountRecord)
            .where(AccountRecord.account_id == account_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        record = result.scalar_one_or_none()
        return self._to_entity(record) if record else None

    async def add(self, account: Account) -> None:
        self._session.add(AccountRecord(**account.model_dump()))
        await self._session.flush()
        logger.debug(f"Added account: {account.account_id} ({account.role.value})")

    async def get_by_practitioner_code(self, code: str) -> Optional[Account]:
        query = (
            select(AccountRecord)
            .where(AccountRecord.practitioner_code == code)
            .where(AccountRecord.role == AccountRole.PRACTITIONER)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        record = result.scalar_one_or_none()
        return self._to_entity(record) if record else None

    async def practitioner_code_exists(self, code: str) -> bool:
        query = select(AccountRecord.account_id).where(AccountRecord.practitioner_code == code).limit(1)
        result = await self._session.execute(query)
        return result.first() is not None

    async def claim_practitioner(self, client_id: str, practitioner_id: str) -> bool:
        """
        Set the pointer from NULL to practitioner_id.

        This is the serialisation point for a client's links: two concurrent
        connects for the same client cannot both see rowcount 1.
        """
        stmt = (
            update(AccountRecord)
            .where(AccountRecord.account_id == client_id)
            .where(AccountRecord.connected_practitioner_id.is_(None))
            .values(connected_practitioner_id=practitioner_id, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def release_practitioner(self, client_id: str, practitioner_id: str) -> bool:
        stmt = (
            update(AccountRecord)
            .where(AccountRecord.account_id == client_id)
            .where(AccountRecord.connected_practitioner_id == practitioner_id)
            .values(connected_practitioner_id=None, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def swap_practitioner(
        self, client_id: str, from_practitioner_id: str, to_practitioner_id: str
    ) -> bool:
        stmt = (
            update(AccountRecord)
            .where(AccountRecord.account_id == client_id)
            .where(AccountRecord.connected_practitioner_id == from_practitioner_id)
            .values(connected_practitioner_id=to_practitioner_id, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_connected_clients(self, practitioner_id: str) -> List[Account]:
        query = (
            select(AccountRecord)
            .where(AccountRecord.connected_practitioner_id == practitioner_id)
            .order_by(AccountRecord.created_at, AccountRecord.account_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return [self._to_entity(record) for record in result.scalars().all()]

    async def count_connected_clients(self, practitioner_id: str) -> int:
        query = (
            select(func.count())
            .select_from(AccountRecord)
            .where(AccountRecord.connected_practitioner_id == practitioner_id)
        )
        result = await self._session.execute(query)
        return int(result.scalar_one())

    async def list_practitioners(
        self, status: Optional[PractitionerStatus] = None
    ) -> List[Account]:
        query = select(AccountRecord).where(AccountRecord.role == AccountRole.PRACTITIONER)
        if status is not None:
            query = query.where(AccountRecord.practitioner_status == status)
        query = query.order_by(AccountRecord.created_at, AccountRecord.account_id)

        result = await self._session.execute(query.execution_options(populate_existing=True))
        return [self._to_entity(record) for record in result.scalars().all()]

    async def advance_rotation_cursor(self, practitioner_id: str, seen_cursor: int) -> bool:
        stmt = (
            update(AccountRecord)
            .where(AccountRecord.account_id == practitioner_id)
            .where(AccountRecord.rotation_cursor == seen_cursor)
            .values(rotation_cursor=AccountRecord.rotation_cursor + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def set_practitioner_status(
        self,
        account_id: str,
        new_status: PractitionerStatus,
        *,
        expected_status: Optional[PractitionerStatus],
        fraud_appeal_deadline: Optional[datetime] = None,
    ) -> bool:
        """
        Move a practitioner between statuses.

        The deadline column is always rewritten so it is only ever set while
        the status is FRAUD.
        """
        stmt = (
            update(AccountRecord)
            .where(AccountRecord.account_id == account_id)
            .where(AccountRecord.role == AccountRole.PRACTITIONER)
        )
        if expected_status is None:
            stmt = stmt.where(AccountRecord.practitioner_status.is_(None))
        else:
            stmt = stmt.where(AccountRecord.practitioner_status == expected_status)

        stmt = stmt.values(
            practitioner_status=new_status,
            fraud_appeal_deadline=fraud_appeal_deadline,
            updated_at=utc_now(),
        ).execution_options(synchronize_session=False)

        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def assign_practitioner_code(self, account_id: str, code: str) -> bool:
        stmt = (
            update(AccountRecord)
            .where(AccountRecord.account_id == account_id)
            .where(AccountRecord.practitioner_code.is_(None))
            .values(practitioner_code=code, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def set_specializations(self, account_id: str, specializations: Sequence[str]) -> None:
        stmt = (
            update(AccountRecord)
            .where(AccountRecord.account_id == account_id)
            .values(specializations=list(specializations), updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def list_fraud_past_deadline(self, now: datetime) -> List[Account]:
        query = (
            select(AccountRecord)
            .where(AccountRecord.role == AccountRole.PRACTITIONER)
            .where(AccountRecord.practitioner_status == PractitionerStatus.FRAUD)
            .where(AccountRecord.fraud_appeal_deadline <= now)
            .order_by(AccountRecord.fraud_appeal_deadline)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return [self._to_entity(record) for record in result.scalars().all()]

    @staticmethod
    def _to_entity(record: AccountRecord) -> Account:
        return Account.model_validate(record, from_attributes=True)
