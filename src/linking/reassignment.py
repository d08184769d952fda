"""
Reassignment Orchestrator.

Moves every client off a practitioner who is leaving the rotation. One
invocation walks ENUMERATING -> PER_MATCHING -> MIGRATING -> REPORTING:

1. ENUMERATING:  read the canonical roster of the target
2. PER_MATCHING: load each client's last known needs
3. MIGRATING:    per client, one transaction picks a new practitioner for
                 those needs (never the target) and moves the client, so a
                 failed move also rolls back the rotation cursor advance
4. REPORTING:    publish ReassignmentCompleted and return the report

Clients are processed concurrently up to a configured bound. Per-client
failures end up in the report; the orchestrator itself only raises when the
roster cannot be read at all.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from config.settings import LinkingSettings, get_linking_settings
from database.unit_of_work import UnitOfWork
from domain.entities import Connection, LinkReason, utc_now
from domain.event_bus import publish_event
from domain.events import ReassignmentCompleted

from .connection_manager import ConnectionManager
from .errors import LinkingError, NoEligiblePractitioner
from .matching import MatchingEngine
from .record_store import RecordStore

logger = logging.getLogger(__name__)


class ReassignmentState(str, Enum):
    """Phases of one reassignment run."""
    ENUMERATING = "enumerating"
    PER_MATCHING = "per_matching"
    MIGRATING = "migrating"
    REPORTING = "reporting"


@dataclass
class ReassignmentOutcome:
    """What happened to one client."""
    client_id: str
    new_practitioner_id: Optional[str] = None
    connection_id: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"client_id": self.client_id}
        if self.error_code:
            data["error_code"] = self.error_code
            data["message"] = self.message
        else:
            data["new_practitioner_id"] = self.new_practitioner_id
            data["connection_id"] = self.connection_id
        return data


@dataclass
class ReassignmentReport:
    """Result of reassigning one practitioner's roster."""
    practitioner_id: str
    reason: LinkReason
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    states: List[ReassignmentState] = field(default_factory=list)
    succeeded: List[ReassignmentOutcome] = field(default_factory=list)
    failed: List[ReassignmentOutcome] = field(default_factory=list)

    def enter(self, state: ReassignmentState) -> None:
        self.states.append(state)
        logger.debug(f"Reassignment of {self.practitioner_id}: {state.value}")

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "practitioner_id": self.practitioner_id,
            "reason": self.reason.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "states": [state.value for state in self.states],
            "succeeded": [outcome.to_dict() for outcome in self.succeeded],
            "failed": [outcome.to_dict() for outcome in self.failed],
        }


class ReassignmentOrchestrator:
    """
    Bulk migration of a practitioner's clients.

    Usage:
        orchestrator = ReassignmentOrchestrator(store, connections, matching)
        report = await orchestrator.reassign_clients(
            "prac-9", LinkReason.PRACTITIONER_DELETED, actor_id="admin-1"
        )
    """

    def __init__(
        self,
        store: RecordStore,
        connections: ConnectionManager,
        matching: MatchingEngine,
        settings: Optional[LinkingSettings] = None,
    ):
        self._store = store
        self._connections = connections
        self._matching = matching
        self.settings = settings or get_linking_settings()

    async def reassign_clients(
        self,
        target_practitioner_id: str,
        reason: LinkReason,
        *,
        actor_id: Optional[str] = None,
    ) -> ReassignmentReport:
        report = ReassignmentReport(practitioner_id=target_practitioner_id, reason=reason)
        semaphore = asyncio.Semaphore(max(1, self.settings.reassignment_concurrency))

        report.enter(ReassignmentState.ENUMERATING)
        roster = await self._connections.list_connected_clients(target_practitioner_id)
        client_ids = [account.account_id for account in roster]
        logger.info(
            f"Reassigning {len(client_ids)} client(s) of {target_practitioner_id} ({reason.value})"
        )

        report.enter(ReassignmentState.PER_MATCHING)
        needs = await asyncio.gather(*(
            self._bounded(semaphore, self._load_needs(client_id))
            for client_id in client_ids
        ))

        candidates: List[Tuple[str, List[str]]] = []
        for client_id, (client_needs, failure) in zip(client_ids, needs):
            if failure is not None:
                report.failed.append(failure)
            else:
                candidates.append((client_id, client_needs))

        report.enter(ReassignmentState.MIGRATING)
        outcomes = await asyncio.gather(*(
            self._bounded(
                semaphore,
                self._migrate_client(client_id, client_needs, target_practitioner_id, reason, actor_id),
            )
            for client_id, client_needs in candidates
        ))
        for outcome in outcomes:
            (report.failed if outcome.error_code else report.succeeded).append(outcome)

        report.enter(ReassignmentState.REPORTING)
        report.finished_at = utc_now()
        self._publish(report, actor_id)
        await self._refresh_roster(target_practitioner_id)

        logger.info(
            f"Reassignment of {target_practitioner_id} finished: "
            f"{len(report.succeeded)} moved, {len(report.failed)} failed"
        )
        return report

    async def _load_needs(
        self, client_id: str
    ) -> Tuple[Optional[List[str]], Optional[ReassignmentOutcome]]:
        try:
            needs = await self._store.read(
                lambda uow: self._last_known_needs(uow, client_id), name="last_known_needs"
            )
            return needs, None
        except LinkingError as e:
            return None, self._failure(client_id, e)
        except Exception as e:
            logger.exception(f"Unexpected error loading needs of {client_id}")
            return None, ReassignmentOutcome(client_id, error_code="internal_error", message=str(e))

    async def _migrate_client(
        self,
        client_id: str,
        needs: List[str],
        target_practitioner_id: str,
        reason: LinkReason,
        actor_id: Optional[str],
    ) -> ReassignmentOutcome:
        try:
            connection = await self._store.write(
                lambda uow: self._match_and_migrate_in(
                    uow, client_id, needs, target_practitioner_id, reason, actor_id
                ),
                name="reassign_client",
            )
            await self._connections.mirror_connection(client_id, connection)
            return ReassignmentOutcome(
                client_id,
                new_practitioner_id=connection.practitioner_id,
                connection_id=connection.connection_id,
            )
        except LinkingError as e:
            return self._failure(client_id, e)
        except Exception as e:
            logger.exception(f"Unexpected error migrating {client_id}")
            return ReassignmentOutcome(client_id, error_code="internal_error", message=str(e))

    async def _match_and_migrate_in(
        self,
        uow: UnitOfWork,
        client_id: str,
        needs: List[str],
        target_practitioner_id: str,
        reason: LinkReason,
        actor_id: Optional[str],
    ) -> Connection:
        practitioner_id = await self._matching.find_match(
            needs, exclude_practitioner_id=target_practitioner_id, uow=uow
        )
        if practitioner_id is None:
            raise NoEligiblePractitioner(f"No eligible practitioner for {client_id}")
        return await self._connections.migrate_in(
            uow, client_id, target_practitioner_id, practitioner_id, reason, actor_id=actor_id
        )

    @staticmethod
    async def _last_known_needs(uow, client_id: str) -> List[str]:
        request = await uow.requests.latest_questionnaire_request(client_id)
        return list(request.needed_specializations) if request else []

    @staticmethod
    async def _bounded(semaphore: asyncio.Semaphore, coro):
        async with semaphore:
            return await coro

    @staticmethod
    def _failure(client_id: str, error: LinkingError) -> ReassignmentOutcome:
        logger.warning(f"Reassignment of {client_id} failed: {error.code}: {error.message}")
        return ReassignmentOutcome(client_id, error_code=error.code, message=error.message)

    def _publish(self, report: ReassignmentReport, actor_id: Optional[str]) -> None:
        try:
            publish_event(ReassignmentCompleted(
                aggregate_id=report.practitioner_id,
                actor_id=actor_id,
                practitioner_id=report.practitioner_id,
                reason=report.reason.value,
                succeeded=[o.client_id for o in report.succeeded],
                failed=[o.client_id for o in report.failed],
            ))
        except Exception as e:
            logger.error(f"Failed to publish ReassignmentCompleted: {e}")

    async def _refresh_roster(self, practitioner_id: str) -> None:
        try:
            await self._connections.list_connected_clients(practitioner_id)
        except LinkingError as e:
            logger.warning(f"Could not refresh roster of {practitioner_id}: {e.message}")
