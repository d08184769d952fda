"""
Practitioner administration.

Admins move practitioners through their lifecycle:

    pending --approve--> approved --suspend--> suspended --approve--> approved
    approved/suspended --tag_fraud--> fraud --clear_fraud--> approved
    any non-deleted --delete--> deleted

Only approved practitioners receive new links. What happens to existing
clients depends on the transition: delete reassigns them immediately,
suspend leaves them in place, and a fraud tag starts an appeal window after
which an admin may reassign them through the fraud sweep. Clients a
deletion could not move stay put until reassign_remaining is run.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from cache.local_cache import LocalCache
from config.settings import LinkingSettings, get_linking_settings
from database.unit_of_work import UnitOfWork
from domain.entities import Account, LinkReason, PractitionerStatus, utc_now
from domain.events import PractitionerStatusChanged

from .codes import generate_code
from .errors import InvalidStatusTransition, LinkingError, NotFound
from .matching import normalize_tags
from .reassignment import ReassignmentOrchestrator, ReassignmentReport
from .record_store import RecordStore

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 20

VALID_STATUS_TRANSITIONS: Dict[PractitionerStatus, Set[PractitionerStatus]] = {
    PractitionerStatus.PENDING: {PractitionerStatus.APPROVED, PractitionerStatus.DELETED},
    PractitionerStatus.APPROVED: {
        PractitionerStatus.SUSPENDED,
        PractitionerStatus.FRAUD,
        PractitionerStatus.DELETED,
    },
    PractitionerStatus.SUSPENDED: {
        PractitionerStatus.APPROVED,
        PractitionerStatus.FRAUD,
        PractitionerStatus.DELETED,
    },
    PractitionerStatus.FRAUD: {PractitionerStatus.APPROVED, PractitionerStatus.DELETED},
    PractitionerStatus.DELETED: set(),  # Terminal
}


def can_change_status(
    from_status: Optional[PractitionerStatus], to_status: PractitionerStatus
) -> bool:
    if from_status is None:
        return False
    return to_status in VALID_STATUS_TRANSITIONS.get(from_status, set())


@dataclass
class DeletionResult:
    """A deleted practitioner and the reassignment of their roster."""
    account: Account
    report: ReassignmentReport

    def to_dict(self) -> Dict[str, Any]:
        return {"account": self.account.to_dict(), "reassignment": self.report.to_dict()}


@dataclass
class FraudSweepResult:
    """Fraud cases past their appeal deadline and what the sweep did with them."""
    eligible: List[Dict[str, Any]] = field(default_factory=list)
    processed: List[ReassignmentReport] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "processed": [report.to_dict() for report in self.processed],
            "skipped": self.skipped,
        }


class PractitionerAdministration:
    """
    Admin-only practitioner status operations.

    Usage:
        admin = PractitionerAdministration(store, orchestrator)
        practitioner = await admin.approve("prac-1", actor_id="admin-1")
        result = await admin.delete("prac-1", actor_id="admin-1")
    """

    def __init__(
        self,
        store: RecordStore,
        orchestrator: ReassignmentOrchestrator,
        settings: Optional[LinkingSettings] = None,
        cache: Optional[LocalCache] = None,
        code_generator: Callable[[int], str] = generate_code,
    ):
        self._store = store
        self._orchestrator = orchestrator
        self.settings = settings or get_linking_settings()
        self._cache = cache
        self._generate_code = code_generator

    # -------------------------------------------------------------------------
    # Status operations
    # -------------------------------------------------------------------------

    async def approve(
        self,
        account_id: str,
        *,
        specializations: Optional[Iterable[str]] = None,
        actor_id: Optional[str] = None,
    ) -> Account:
        """Approve a pending or suspended practitioner, assigning a code if needed."""
        account = await self._store.write(
            lambda uow: self.approve_in(
                uow, account_id, specializations=specializations, actor_id=actor_id
            ),
            name="approve_practitioner",
        )
        await self._mirror(account)
        return account

    async def approve_in(
        self,
        uow: UnitOfWork,
        account_id: str,
        *,
        specializations: Optional[Iterable[str]] = None,
        actor_id: Optional[str] = None,
    ) -> Account:
        account = await self._change_status_in(
            uow,
            account_id,
            PractitionerStatus.APPROVED,
            allowed_from={PractitionerStatus.PENDING, PractitionerStatus.SUSPENDED},
            actor_id=actor_id,
        )
        if specializations is not None:
            await uow.accounts.set_specializations(account_id, normalize_tags(specializations))
        if not account.practitioner_code:
            await self._assign_code(uow, account_id)
        return await self._require_practitioner(uow, account_id)

    async def suspend(self, account_id: str, *, actor_id: Optional[str] = None) -> Account:
        """Stop new links. Existing clients stay."""
        return await self._status_write(
            account_id,
            PractitionerStatus.SUSPENDED,
            allowed_from={PractitionerStatus.APPROVED},
            actor_id=actor_id,
        )

    async def tag_fraud(self, account_id: str, *, actor_id: Optional[str] = None) -> Account:
        """Flag a practitioner as fraudulent and open the appeal window."""
        deadline = utc_now() + timedelta(days=self.settings.fraud_appeal_days)
        return await self._status_write(
            account_id,
            PractitionerStatus.FRAUD,
            allowed_from={PractitionerStatus.APPROVED, PractitionerStatus.SUSPENDED},
            fraud_appeal_deadline=deadline,
            actor_id=actor_id,
        )

    async def clear_fraud(self, account_id: str, *, actor_id: Optional[str] = None) -> Account:
        """Appeal upheld: back to approved, deadline cleared."""
        return await self._status_write(
            account_id,
            PractitionerStatus.APPROVED,
            allowed_from={PractitionerStatus.FRAUD},
            actor_id=actor_id,
        )

    async def delete(self, account_id: str, *, actor_id: Optional[str] = None) -> DeletionResult:
        """Soft-delete a practitioner and immediately reassign their clients."""
        account = await self._status_write(
            account_id, PractitionerStatus.DELETED, actor_id=actor_id
        )
        report = await self._orchestrator.reassign_clients(
            account_id, LinkReason.PRACTITIONER_DELETED, actor_id=actor_id
        )
        return DeletionResult(account=account, report=report)

    async def reassign_remaining(
        self, account_id: str, *, actor_id: Optional[str] = None
    ) -> ReassignmentReport:
        """
        Retry reassignment for clients still linked to a deleted practitioner.

        Deletion leaves a client in place when no practitioner matched or its
        migration failed; this is the operator's way to move them later.

        Raises:
            NotFound: Unknown practitioner.
            InvalidStatusTransition: The practitioner is not deleted.
        """
        account = await self.get_practitioner(account_id)
        if account.practitioner_status != PractitionerStatus.DELETED:
            status = account.practitioner_status.value if account.practitioner_status else None
            raise InvalidStatusTransition(
                f"Practitioner {account_id} is {status or 'none'}; "
                "only a deleted practitioner's clients are handed over",
                {"from": status, "to": PractitionerStatus.DELETED.value},
            )
        return await self._orchestrator.reassign_clients(
            account_id, LinkReason.PRACTITIONER_DELETED, actor_id=actor_id
        )

    # -------------------------------------------------------------------------
    # Fraud sweep
    # -------------------------------------------------------------------------

    async def sweep_expired_fraud_reassignments(
        self,
        selected_ids: Optional[Iterable[str]] = None,
        *,
        actor_id: Optional[str] = None,
    ) -> FraudSweepResult:
        """
        List fraud cases past their appeal deadline, optionally reassigning some.

        Args:
            selected_ids: Practitioners the admin chose to process. None only
                lists the eligible cases.
            actor_id: Admin performing the sweep.

        Returns:
            Eligible cases with roster sizes, one report per processed case
            and the selected ids that were no longer eligible.
        """
        eligible = await self._store.read(self._expired_fraud_cases, name="fraud_sweep")
        result = FraudSweepResult(eligible=eligible)
        if selected_ids is None:
            return result

        eligible_ids = {case["practitioner_id"] for case in eligible}
        for practitioner_id in dict.fromkeys(selected_ids):
            if practitioner_id not in eligible_ids:
                logger.info(f"Fraud sweep skipped {practitioner_id}: not eligible")
                result.skipped.append(practitioner_id)
                continue

            report = await self._orchestrator.reassign_clients(
                practitioner_id, LinkReason.FRAUD_APPEAL_DEADLINE_EXPIRED, actor_id=actor_id
            )
            result.processed.append(report)

        return result

    @staticmethod
    async def _expired_fraud_cases(uow: UnitOfWork) -> List[Dict[str, Any]]:
        cases = []
        for account in await uow.accounts.list_fraud_past_deadline(utc_now()):
            cases.append({
                "practitioner_id": account.account_id,
                "display_name": account.display_name,
                "fraud_appeal_deadline": account.fraud_appeal_deadline.isoformat(),
                "client_count": await uow.accounts.count_connected_clients(account.account_id),
            })
        return cases

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_practitioner(self, account_id: str) -> Account:
        return await self._store.read(
            lambda uow: self._require_practitioner(uow, account_id), name="get_practitioner"
        )

    async def list_practitioners(
        self, status: Optional[PractitionerStatus] = None
    ) -> List[Account]:
        return await self._store.read(
            lambda uow: uow.accounts.list_practitioners(status), name="list_practitioners"
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _status_write(
        self,
        account_id: str,
        target: PractitionerStatus,
        *,
        allowed_from: Optional[Set[PractitionerStatus]] = None,
        fraud_appeal_deadline=None,
        actor_id: Optional[str] = None,
    ) -> Account:
        account = await self._store.write(
            lambda uow: self._change_status_in(
                uow,
                account_id,
                target,
                allowed_from=allowed_from,
                fraud_appeal_deadline=fraud_appeal_deadline,
                actor_id=actor_id,
            ),
            name=f"practitioner_{target.value}",
        )
        await self._mirror(account)
        return account

    async def _change_status_in(
        self,
        uow: UnitOfWork,
        account_id: str,
        target: PractitionerStatus,
        *,
        allowed_from: Optional[Set[PractitionerStatus]] = None,
        fraud_appeal_deadline=None,
        actor_id: Optional[str] = None,
    ) -> Account:
        account = await self._require_practitioner(uow, account_id)
        current = account.practitioner_status

        allowed = can_change_status(current, target)
        if allowed_from is not None and current not in allowed_from:
            allowed = False
        if not allowed:
            raise InvalidStatusTransition(
                f"Cannot move practitioner {account_id} from "
                f"{current.value if current else 'none'} to {target.value}",
                {"from": current.value if current else None, "to": target.value},
            )

        if not await uow.accounts.set_practitioner_status(
            account_id,
            target,
            expected_status=current,
            fraud_appeal_deadline=fraud_appeal_deadline,
        ):
            raise InvalidStatusTransition(
                f"Practitioner {account_id} changed status concurrently"
            )

        uow.collect_event(PractitionerStatusChanged(
            aggregate_id=account_id,
            actor_id=actor_id,
            practitioner_id=account_id,
            old_status=current.value if current else None,
            new_status=target.value,
            fraud_appeal_deadline=fraud_appeal_deadline,
        ))
        logger.info(
            f"Practitioner {account_id}: {current.value if current else 'none'} -> {target.value}"
        )
        return account.model_copy(update={
            "practitioner_status": target,
            "fraud_appeal_deadline": fraud_appeal_deadline,
        })

    async def _assign_code(self, uow: UnitOfWork, account_id: str) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self._generate_code(self.settings.code_length)
            if await uow.accounts.practitioner_code_exists(code):
                continue
            if await uow.accounts.assign_practitioner_code(account_id, code):
                logger.info(f"Assigned practitioner code to {account_id}")
                return code
            # Someone else assigned a code first; codes never change once set
            account = await self._require_practitioner(uow, account_id)
            return account.practitioner_code

        raise LinkingError(f"Could not allocate a unique practitioner code for {account_id}")

    @staticmethod
    async def _require_practitioner(uow: UnitOfWork, account_id: str) -> Account:
        account = await uow.accounts.get(account_id)
        if account is None or not account.is_practitioner:
            raise NotFound(f"Practitioner {account_id} not found")
        return account

    async def _mirror(self, account: Account) -> None:
        """Keep the cached code index in step with the practitioner's status."""
        if self._cache is None or not account.practitioner_code:
            return
        try:
            await self._cache.mirror_practitioner_code(account.practitioner_code, account)
        except Exception as e:
            logger.warning(f"Could not mirror practitioner {account.account_id}: {e}")
