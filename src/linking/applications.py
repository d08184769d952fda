"""
Practitioner applications.

Applying creates (or reuses) a practitioner account in pending status plus a
pending application record. Review is done by an admin; approval goes through
PractitionerAdministration so the account status stays the only thing the
rest of the system checks. Applications are history.
"""

import logging
from typing import Iterable, List, Optional
from uuid import uuid4

from database.unit_of_work import UnitOfWork
from domain.entities import (
    Account,
    AccountRole,
    ApplicationStatus,
    PractitionerApplication,
    PractitionerStatus,
    utc_now,
)
from domain.events import ApplicationReviewed, ApplicationSubmitted

from .admin import PractitionerAdministration
from .codes import normalize_contact
from .errors import InvalidInput, InvalidStatusTransition, NotFound
from .matching import normalize_tags
from .record_store import RecordStore

logger = logging.getLogger(__name__)


class ApplicationService:
    """Submission and review of practitioner applications."""

    def __init__(self, store: RecordStore, admin: PractitionerAdministration):
        self._store = store
        self._admin = admin

    async def submit_application(
        self,
        account_id: str,
        *,
        email: str,
        first_name: str,
        last_name: str,
        specializations: Iterable[str],
        years_experience: int = 0,
        practice_name: Optional[str] = None,
        qualifications: Optional[str] = None,
    ) -> PractitionerApplication:
        """
        Apply to become a practitioner.

        Raises:
            InvalidInput: Missing names, bad email, no specializations,
                negative experience, a non-practitioner account or an
                application already pending.
        """
        tags = normalize_tags(specializations)
        normalized_email = normalize_contact(email)
        errors = []
        if not (first_name or "").strip() or not (last_name or "").strip():
            errors.append("first and last name are required")
        if normalized_email is None or "@" not in normalized_email:
            errors.append("a valid email is required")
        if not tags:
            errors.append("at least one specialization is required")
        if years_experience is None or years_experience < 0:
            errors.append("years of experience cannot be negative")
        if errors:
            raise InvalidInput("Invalid application: " + "; ".join(errors), {"errors": errors})

        application = PractitionerApplication(
            application_id=str(uuid4()),
            account_id=account_id,
            email=normalized_email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            practice_name=practice_name,
            qualifications=qualifications,
            years_experience=years_experience,
            specializations=tags,
        )
        return await self._store.write(
            lambda uow: self._submit_in(uow, application), name="submit_application"
        )

    async def _submit_in(
        self, uow: UnitOfWork, application: PractitionerApplication
    ) -> PractitionerApplication:
        account = await uow.accounts.get(application.account_id)
        if account is None:
            await uow.accounts.add(Account(
                account_id=application.account_id,
                role=AccountRole.PRACTITIONER,
                email=application.email,
                display_name=f"{application.first_name} {application.last_name}",
                practitioner_status=PractitionerStatus.PENDING,
                specializations=application.specializations,
            ))
        elif not account.is_practitioner:
            raise InvalidInput(f"Account {application.account_id} is not a practitioner account")

        if await uow.applications.find_pending_for_account(application.account_id):
            raise InvalidInput("An application is already pending for this account")

        await uow.applications.add(application)
        uow.collect_event(ApplicationSubmitted(
            aggregate_id=application.application_id,
            actor_id=application.account_id,
            account_id=application.account_id,
        ))
        logger.info(f"Application {application.application_id} submitted by {application.account_id}")
        return application

    async def approve_application(self, application_id: str, admin_id: str) -> Account:
        """Approve the application and the practitioner behind it."""
        return await self._store.write(
            lambda uow: self._review_in(uow, application_id, admin_id, approved=True),
            name="approve_application",
        )

    async def reject_application(
        self, application_id: str, admin_id: str, note: Optional[str] = None
    ) -> PractitionerApplication:
        """Reject the application. The account stays pending."""
        await self._store.write(
            lambda uow: self._review_in(uow, application_id, admin_id, approved=False, note=note),
            name="reject_application",
        )
        return await self.get_application(application_id)

    async def _review_in(
        self,
        uow: UnitOfWork,
        application_id: str,
        admin_id: str,
        *,
        approved: bool,
        note: Optional[str] = None,
    ) -> Optional[Account]:
        application = await uow.applications.get(application_id)
        if application is None:
            raise NotFound(f"Application {application_id} not found")
        if application.status != ApplicationStatus.PENDING:
            raise InvalidStatusTransition(
                f"Application {application_id} was already {application.status.value}"
            )

        status = ApplicationStatus.APPROVED if approved else ApplicationStatus.REJECTED
        if not await uow.applications.review(
            application_id, status, reviewed_by=admin_id, reviewed_at=utc_now(), note=note
        ):
            raise InvalidStatusTransition(f"Application {application_id} was reviewed concurrently")

        account = None
        if approved:
            account = await self._admin.approve_in(
                uow,
                application.account_id,
                specializations=application.specializations,
                actor_id=admin_id,
            )

        uow.collect_event(ApplicationReviewed(
            aggregate_id=application_id,
            actor_id=admin_id,
            account_id=application.account_id,
            approved=approved,
        ))
        logger.info(f"Application {application_id} {status.value} by {admin_id}")
        return account

    async def get_application(self, application_id: str) -> PractitionerApplication:
        application = await self._store.read(
            lambda uow: uow.applications.get(application_id), name="get_application"
        )
        if application is None:
            raise NotFound(f"Application {application_id} not found")
        return application

    async def list_applications(
        self, status: Optional[ApplicationStatus] = None
    ) -> List[PractitionerApplication]:
        return await self._store.read(
            lambda uow: uow.applications.list_applications(status), name="list_applications"
        )
