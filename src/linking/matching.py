"""
Matching engine.

Picks an approved practitioner for a set of needed specializations, spreading
load round-robin. Each practitioner carries a rotation cursor; the candidate
with the lowest cursor wins (ties broken by sign-up order, then id) and its
cursor is advanced with a compare-and-set. Losing the compare-and-set means
another matcher took that slot, so the candidate list is re-read and the
selection repeated.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from config.settings import LinkingSettings, get_linking_settings
from database.unit_of_work import UnitOfWork
from domain.entities import Account, PractitionerStatus

from .errors import StoreUnavailable
from .record_store import RecordStore

logger = logging.getLogger(__name__)


def normalize_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Lower-case, trim and de-duplicate specialization tags, keeping order."""
    seen = []
    for tag in tags or ():
        value = (tag or "").strip().lower()
        if value and value not in seen:
            seen.append(value)
    return seen


class MatchingEngine:
    """
    Round-robin practitioner selection.

    Usage:
        engine = MatchingEngine(store)
        practitioner_id = await engine.find_match(["tax", "estate"])
    """

    def __init__(self, store: RecordStore, settings: Optional[LinkingSettings] = None):
        self._store = store
        self.settings = settings or get_linking_settings()

    async def find_match(
        self,
        needed_specializations: Sequence[str],
        exclude_practitioner_id: Optional[str] = None,
        *,
        also_exclude: Iterable[str] = (),
        uow: Optional[UnitOfWork] = None,
    ) -> Optional[str]:
        """
        Select a practitioner and advance their rotation cursor.

        Args:
            needed_specializations: Tags the client needs. Empty means any
                approved practitioner will do.
            exclude_practitioner_id: Practitioner that must not be chosen.
            also_exclude: Further practitioners to skip (earlier decliners).
            uow: Run inside this unit of work instead of a new transaction.

        Returns:
            The chosen practitioner's account id, or None if nobody is eligible.
        """
        excluded = set(also_exclude)
        if exclude_practitioner_id:
            excluded.add(exclude_practitioner_id)
        needs = normalize_tags(needed_specializations)

        if uow is not None:
            return await self._match_in(uow, needs, excluded)
        return await self._store.write(
            lambda u: self._match_in(u, needs, excluded), name="find_match"
        )

    async def _match_in(self, uow: UnitOfWork, needs: List[str], excluded: set) -> Optional[str]:
        for attempt in range(1, self.settings.match_contention_attempts + 1):
            approved = await uow.accounts.list_practitioners(PractitionerStatus.APPROVED)
            candidates = self.eligible(approved, needs, excluded)
            if not candidates:
                logger.info(f"No eligible practitioner for {needs or 'any'} (excluded {len(excluded)})")
                return None

            chosen = min(candidates, key=lambda a: (a.rotation_cursor, a.created_at, a.account_id))
            if await uow.accounts.advance_rotation_cursor(chosen.account_id, chosen.rotation_cursor):
                logger.info(
                    f"Matched {chosen.account_id} for {needs or 'any'} "
                    f"(cursor {chosen.rotation_cursor} -> {chosen.rotation_cursor + 1})"
                )
                return chosen.account_id

            logger.debug(f"Rotation cursor contention on {chosen.account_id}, attempt {attempt}")

        raise StoreUnavailable(
            "Rotation cursor contention did not settle",
            {"attempts": self.settings.match_contention_attempts},
        )

    def eligible(self, approved: List[Account], needs: List[str], excluded: set) -> List[Account]:
        """Approved, non-excluded practitioners covering at least one need."""
        pool = [a for a in approved if a.is_approved and a.account_id not in excluded]
        if not needs:
            return pool

        wanted = set(needs)
        matching = [a for a in pool if wanted & set(normalize_tags(a.specializations))]
        if not matching and self.settings.matching_fallback_to_any:
            logger.info(f"No specialist for {needs}; falling back to any approved practitioner")
            return pool
        return matching
