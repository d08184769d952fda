"""
Request intake for the practitioner-code and questionnaire paths.

Path A (practitioner code): the client enters a practitioner's code and a
pending request lands in that practitioner's inbox.

Path C (questionnaire): the client states what they need, the matching
engine picks a practitioner and a pending request is created for them. A
decline re-matches among the practitioners who have not yet declined and
chains a new request onto the old one. When nobody is left the request is
parked as unassigned until rematch_request() finds someone.

Accepting a request commits the link through the connection manager in the
same transaction as the request transition.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from cache.local_cache import LocalCache, PendingWriteKind
from database.unit_of_work import UnitOfWork
from domain.entities import (
    Account,
    Connection,
    ConnectionOrigin,
    ConnectionRequest,
    RequestPath,
    RequestStatus,
    utc_now,
)
from domain.events import RequestDecided, RequestSubmitted

from ..codes import normalize_code
from ..connection_manager import ConnectionManager
from ..errors import (
    AlreadyConnected,
    InvalidRequestState,
    NoEligiblePractitioner,
    NotFound,
    PermissionDenied,
    StoreUnavailable,
    Unconfirmed,
)
from ..matching import MatchingEngine, normalize_tags
from ..record_store import ReadResult, ReadSource, RecordStore
from .states import RequestState, ensure_transition, state_of

logger = logging.getLogger(__name__)


@dataclass
class DeclineResult:
    """A declined request and, for questionnaire requests, its successor."""
    declined: ConnectionRequest
    next_request: Optional[ConnectionRequest] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "declined": self.declined.to_dict(),
            "next_request": self.next_request.to_dict() if self.next_request else None,
        }


class RequestIntake:
    """
    Creates and decides connection requests.

    Usage:
        intake = RequestIntake(store, connections, matching, cache)
        request = await intake.request_by_code("client-1", " 7k2p9q ")
        connection = await intake.accept_request(request.request_id, request.practitioner_id)
    """

    def __init__(
        self,
        store: RecordStore,
        connections: ConnectionManager,
        matching: MatchingEngine,
        cache: Optional[LocalCache] = None,
    ):
        self._store = store
        self._connections = connections
        self._matching = matching
        self._cache = cache

    # -------------------------------------------------------------------------
    # Path A: practitioner code
    # -------------------------------------------------------------------------

    async def request_by_code(self, client_id: str, code: str) -> ConnectionRequest:
        """
        Ask to connect with the practitioner behind a code.

        Idempotent: while a pending request for the same pair exists, that
        request is returned instead of a new one.

        Raises:
            NotFound: Unknown client, unknown code or practitioner not approved.
            AlreadyConnected: The client already has an active link.
            Unconfirmed: The store was unreachable; the request was journaled
                against the cached code index.
        """
        normalized = normalize_code(code)
        if not normalized:
            raise NotFound("Unknown practitioner code")

        try:
            return await self.write_code_request(client_id, normalized)
        except StoreUnavailable as e:
            entry = await self._journal_code_request(client_id, normalized)
            if entry is None:
                raise
            raise Unconfirmed(
                f"Request for code {normalized} queued until the store is reachable",
                entry.write_id,
            ) from e

    async def write_code_request(self, client_id: str, code: str) -> ConnectionRequest:
        """Store-only path A request: never journals. Used directly by replay."""
        code = normalize_code(code)
        try:
            request = await self._store.write(
                lambda uow: self._code_request_in(uow, client_id, code), name="request_by_code"
            )
        except IntegrityError:
            # A concurrent submission won the partial unique index
            request = await self._store.read(
                lambda uow: self._existing_code_request(uow, client_id, code),
                name="request_by_code",
            )
            if request is None:
                raise
        return request

    async def resolve_practitioner_code(self, code: str) -> ReadResult[Optional[Account]]:
        """
        Look up the approved practitioner behind a code.

        The store is queried first; the cached code index is only used when
        the store is unreachable, and the result is then marked stale.
        """
        normalized = normalize_code(code)
        try:
            practitioner = await self._store.read(
                lambda uow: uow.accounts.get_by_practitioner_code(normalized),
                name="resolve_practitioner_code",
            )
        except StoreUnavailable:
            if self._cache is None:
                raise
            logger.warning("Resolving practitioner code from cache: store unavailable")
            cached = await self._cache.get_practitioner_by_code(normalized)
            if cached is not None and not cached.is_approved:
                cached = None
            return ReadResult(cached, stale=True, source=ReadSource.LOCAL_CACHE)

        if practitioner is None or not practitioner.is_approved:
            return ReadResult(None)
        await self._mirror_code(normalized, practitioner)
        return ReadResult(practitioner)

    async def _code_request_in(
        self, uow: UnitOfWork, client_id: str, code: str
    ) -> ConnectionRequest:
        client = await self._require_client(uow, client_id)

        practitioner = await uow.accounts.get_by_practitioner_code(code)
        if practitioner is None or not practitioner.is_approved:
            raise NotFound("Unknown practitioner code")

        if client.connected_practitioner_id is not None:
            raise AlreadyConnected(f"Client {client_id} already has an active connection")

        existing = await uow.requests.find_pending_code_request(client_id, practitioner.account_id)
        if existing is not None:
            logger.debug(f"Returning existing code request {existing.request_id}")
            return existing

        ensure_transition(RequestState.SUBMITTED, RequestState.PENDING)
        request = ConnectionRequest(
            request_id=str(uuid4()),
            client_id=client_id,
            practitioner_id=practitioner.account_id,
            path=RequestPath.PRACTITIONER_CODE,
            status=RequestStatus.PENDING,
        )
        await uow.requests.add(request)
        uow.collect_event(self._submitted(request))
        logger.info(f"Code request {request.request_id}: {client_id} -> {practitioner.account_id}")
        return request

    @staticmethod
    async def _existing_code_request(
        uow: UnitOfWork, client_id: str, code: str
    ) -> Optional[ConnectionRequest]:
        practitioner = await uow.accounts.get_by_practitioner_code(code)
        if practitioner is None:
            return None
        return await uow.requests.find_pending_code_request(client_id, practitioner.account_id)

    # -------------------------------------------------------------------------
    # Path C: questionnaire
    # -------------------------------------------------------------------------

    async def submit_questionnaire(
        self,
        client_id: str,
        needed_specializations: Sequence[str],
        message: Optional[str] = None,
    ) -> ConnectionRequest:
        """
        Match the client against approved practitioners.

        Returns:
            A pending request for the matched practitioner, or an unassigned
            request when nobody is eligible.
        """
        needs = normalize_tags(needed_specializations)
        return await self._store.write(
            lambda uow: self._questionnaire_in(uow, client_id, needs, message),
            name="submit_questionnaire",
        )

    async def _questionnaire_in(
        self,
        uow: UnitOfWork,
        client_id: str,
        needs: List[str],
        message: Optional[str],
    ) -> ConnectionRequest:
        client = await self._require_client(uow, client_id)
        if client.connected_practitioner_id is not None:
            raise AlreadyConnected(f"Client {client_id} already has an active connection")

        practitioner_id = await self._matching.find_match(needs, uow=uow)
        state = RequestState.PENDING if practitioner_id else RequestState.UNASSIGNED
        ensure_transition(RequestState.SUBMITTED, state)

        request = ConnectionRequest(
            request_id=str(uuid4()),
            client_id=client_id,
            practitioner_id=practitioner_id,
            path=RequestPath.QUESTIONNAIRE,
            status=state.status,
            needed_specializations=needs,
            message=message,
        )
        await uow.requests.add(request)
        uow.collect_event(self._submitted(request))
        logger.info(
            f"Questionnaire request {request.request_id} for {client_id}: "
            f"{state.value} ({practitioner_id or 'no match'})"
        )
        return request

    async def rematch_request(
        self, request_id: str, *, client_id: Optional[str] = None
    ) -> ConnectionRequest:
        """
        Retry matching for an unassigned questionnaire request.

        Raises:
            NoEligiblePractitioner: Still nobody to match.
            InvalidRequestState: The request is not unassigned.
        """
        return await self._store.write(
            lambda uow: self._rematch_in(uow, request_id, client_id), name="rematch_request"
        )

    async def _rematch_in(
        self, uow: UnitOfWork, request_id: str, client_id: Optional[str]
    ) -> ConnectionRequest:
        request = await self._require_request(uow, request_id)
        if client_id is not None and request.client_id != client_id:
            raise PermissionDenied("Request belongs to another client")
        ensure_transition(state_of(request), RequestState.PENDING)

        practitioner_id = await self._matching.find_match(
            request.needed_specializations, also_exclude=request.declined_by, uow=uow
        )
        if practitioner_id is None:
            raise NoEligiblePractitioner("No eligible practitioner is available yet")

        moved = await uow.requests.transition(
            request_id,
            from_status=RequestStatus.UNASSIGNED,
            to_status=RequestStatus.PENDING,
            practitioner_id=practitioner_id,
        )
        if not moved:
            raise InvalidRequestState("Request changed while re-matching")

        request = request.model_copy(
            update={"status": RequestStatus.PENDING, "practitioner_id": practitioner_id}
        )
        uow.collect_event(self._submitted(request))
        return request

    # -------------------------------------------------------------------------
    # Practitioner decisions
    # -------------------------------------------------------------------------

    async def accept_request(
        self, request_id: str, practitioner_id: str
    ) -> Connection:
        """
        Accept a pending request and link the client.

        The request transition and the connect commit together, so an
        accept that cannot connect leaves the request pending.
        """
        connection = await self._store.write(
            lambda uow: self._accept_in(uow, request_id, practitioner_id), name="accept_request"
        )
        await self._connections.mirror_connection(connection.client_id, connection)
        return connection

    async def _accept_in(
        self, uow: UnitOfWork, request_id: str, practitioner_id: str
    ) -> Connection:
        request = await self._require_request(uow, request_id)
        self._require_assignee(request, practitioner_id)
        ensure_transition(state_of(request), RequestState.ACCEPTED)

        if not await uow.requests.transition(
            request_id,
            from_status=RequestStatus.PENDING,
            to_status=RequestStatus.ACCEPTED,
            decided_at=utc_now(),
        ):
            raise InvalidRequestState("Request was decided concurrently")

        origin = (
            ConnectionOrigin.PRACTITIONER_CODE
            if request.path == RequestPath.PRACTITIONER_CODE
            else ConnectionOrigin.QUESTIONNAIRE
        )
        connection = await self._connections.connect_in(
            uow, request.client_id, practitioner_id, origin=origin, actor_id=practitioner_id
        )
        uow.collect_event(RequestDecided(
            aggregate_id=request_id,
            actor_id=practitioner_id,
            client_id=request.client_id,
            practitioner_id=practitioner_id,
            accepted=True,
        ))
        return connection

    async def decline_request(self, request_id: str, practitioner_id: str) -> DeclineResult:
        """
        Decline a pending request.

        Questionnaire requests are re-matched excluding every practitioner
        who declined along the chain.
        """
        return await self._store.write(
            lambda uow: self._decline_in(uow, request_id, practitioner_id), name="decline_request"
        )

    async def _decline_in(
        self, uow: UnitOfWork, request_id: str, practitioner_id: str
    ) -> DeclineResult:
        request = await self._require_request(uow, request_id)
        self._require_assignee(request, practitioner_id)
        ensure_transition(state_of(request), RequestState.DECLINED)

        declined_by = list(request.declined_by)
        if practitioner_id not in declined_by:
            declined_by.append(practitioner_id)
        now = utc_now()

        if not await uow.requests.transition(
            request_id,
            from_status=RequestStatus.PENDING,
            to_status=RequestStatus.DECLINED,
            declined_by=declined_by,
            decided_at=now,
        ):
            raise InvalidRequestState("Request was decided concurrently")

        declined = request.model_copy(update={
            "status": RequestStatus.DECLINED,
            "declined_by": declined_by,
            "decided_at": now,
        })

        next_request = None
        if request.path == RequestPath.QUESTIONNAIRE:
            next_request = await self._chain_next(uow, declined)

        uow.collect_event(RequestDecided(
            aggregate_id=request_id,
            actor_id=practitioner_id,
            client_id=request.client_id,
            practitioner_id=practitioner_id,
            accepted=False,
            next_request_id=next_request.request_id if next_request else None,
        ))
        return DeclineResult(declined=declined, next_request=next_request)

    async def _chain_next(self, uow: UnitOfWork, declined: ConnectionRequest) -> ConnectionRequest:
        practitioner_id = await self._matching.find_match(
            declined.needed_specializations, also_exclude=declined.declined_by, uow=uow
        )
        state = RequestState.PENDING if practitioner_id else RequestState.UNASSIGNED
        ensure_transition(RequestState.SUBMITTED, state)

        successor = ConnectionRequest(
            request_id=str(uuid4()),
            client_id=declined.client_id,
            practitioner_id=practitioner_id,
            path=RequestPath.QUESTIONNAIRE,
            status=state.status,
            needed_specializations=declined.needed_specializations,
            declined_by=declined.declined_by,
            parent_request_id=declined.request_id,
            message=declined.message,
        )
        await uow.requests.add(successor)
        uow.collect_event(self._submitted(successor))
        logger.info(
            f"Request {declined.request_id} declined; successor {successor.request_id} "
            f"is {state.value} ({practitioner_id or 'no match'})"
        )
        return successor

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def pending_requests(self, practitioner_id: str) -> List[ConnectionRequest]:
        """A practitioner's inbox, oldest first."""
        return await self._store.read(
            lambda uow: uow.requests.list_pending_for_practitioner(practitioner_id),
            name="pending_requests",
        )

    async def client_requests(self, client_id: str) -> List[ConnectionRequest]:
        return await self._store.read(
            lambda uow: uow.requests.list_for_client(client_id), name="client_requests"
        )

    async def last_known_needs(self, client_id: str) -> List[str]:
        """Needs from the client's most recent questionnaire, or [] for any."""
        request = await self._store.read(
            lambda uow: uow.requests.latest_questionnaire_request(client_id),
            name="last_known_needs",
        )
        return list(request.needed_specializations) if request else []

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    async def _require_client(uow: UnitOfWork, client_id: str) -> Account:
        client = await uow.accounts.get(client_id)
        if client is None or not client.is_client:
            raise NotFound(f"Client {client_id} not found")
        return client

    @staticmethod
    async def _require_request(uow: UnitOfWork, request_id: str) -> ConnectionRequest:
        request = await uow.requests.get(request_id)
        if request is None:
            raise NotFound(f"Request {request_id} not found")
        return request

    @staticmethod
    def _require_assignee(request: ConnectionRequest, practitioner_id: str) -> None:
        if request.practitioner_id != practitioner_id:
            raise PermissionDenied("Only the assigned practitioner can decide this request")

    @staticmethod
    def _submitted(request: ConnectionRequest) -> RequestSubmitted:
        return RequestSubmitted(
            aggregate_id=request.request_id,
            actor_id=request.client_id,
            client_id=request.client_id,
            practitioner_id=request.practitioner_id,
            path=request.path.value,
            status=request.status.value,
        )

    async def _journal_code_request(self, client_id: str, code: str):
        """Journal a path A request, but only for a code the cache knows is approved."""
        if self._cache is None:
            return None
        practitioner = await self._cache.get_practitioner_by_code(code)
        if practitioner is None or not practitioner.is_approved:
            return None
        return await self._cache.journal_write(
            PendingWriteKind.CODE_REQUEST, {"client_id": client_id, "code": code}
        )

    async def _mirror_code(self, code: str, practitioner: Account) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.mirror_practitioner_code(code, practitioner)
        except Exception as e:
            logger.warning(f"Could not mirror practitioner code: {e}")
