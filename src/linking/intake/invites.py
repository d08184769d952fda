"""
Practitioner-issued client invites (intake path B).

A practitioner invites a client by phone or email. The invite carries a
short code delivered out of band; the client proves possession of the code
together with the same contact to get linked. Verification fails closed:
wrong code, unknown contact, expired and already-used invites all produce
the same InvalidInvite.
"""

import hmac
import logging
from datetime import timedelta
from typing import Callable, List, Optional, Protocol

from config.settings import LinkingSettings, get_linking_settings
from database.unit_of_work import UnitOfWork
from domain.entities import (
    ClientInvite,
    Connection,
    ConnectionOrigin,
    InviteStatus,
    utc_now,
)
from domain.events import InviteAccepted, InviteCreated

from ..codes import generate_code, generate_invite_token, normalize_code, normalize_contact
from ..connection_manager import ConnectionManager
from ..errors import InvalidInput, InvalidInvite, NotFound, PractitionerUnavailable
from ..record_store import RecordStore

logger = logging.getLogger(__name__)


class InviteNotifier(Protocol):
    """Delivers an invite's code to the invited client."""

    async def deliver(self, invite: ClientInvite) -> None:
        ...


class LoggingInviteNotifier:
    """Notifier that only records that a delivery would have happened."""

    async def deliver(self, invite: ClientInvite) -> None:
        logger.info(
            f"Invite {invite.invite_id[:8]}... for {_mask(invite.client_contact)} "
            f"expires {invite.expires_at.isoformat()}"
        )


def _mask(contact: str) -> str:
    if "@" in contact:
        name, _, domain = contact.partition("@")
        return f"{name[:1]}***@{domain}"
    return f"***{contact[-4:]}"


class InviteService:
    """
    Creates, verifies and expires client invites.

    Usage:
        invites = InviteService(store, connections)
        invite = await invites.create_invite("prac-1", "+27 82 123 4567")
        connection = await invites.verify_invite("client-1", "+27821234567", invite.code)
    """

    def __init__(
        self,
        store: RecordStore,
        connections: ConnectionManager,
        settings: Optional[LinkingSettings] = None,
        notifier: Optional[InviteNotifier] = None,
        code_generator: Callable[[int], str] = generate_code,
        token_generator: Callable[[], str] = generate_invite_token,
    ):
        self._store = store
        self._connections = connections
        self.settings = settings or get_linking_settings()
        self._notifier = notifier or LoggingInviteNotifier()
        self._generate_code = code_generator
        self._generate_token = token_generator

    async def create_invite(
        self,
        practitioner_id: str,
        client_contact: str,
        *,
        client_name: Optional[str] = None,
        note: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> ClientInvite:
        """
        Issue an invite and hand it to the notifier.

        Args:
            practitioner_id: Approved practitioner issuing the invite.
            client_contact: Phone number or email; normalised before storage.
            client_name: Optional display name for the practitioner's list.
            note: Optional note delivered with the code.
            ttl: Lifetime; defaults to LINKING_INVITE_TTL_HOURS.

        Raises:
            InvalidInput: The contact is neither a phone number nor an email.
            NotFound / PractitionerUnavailable: Bad issuing practitioner.
        """
        contact = normalize_contact(client_contact)
        if contact is None:
            raise InvalidInput("Client contact must be a phone number or email address")

        lifetime = ttl or timedelta(hours=self.settings.invite_ttl_hours)
        invite = await self._store.write(
            lambda uow: self._create_in(uow, practitioner_id, contact, client_name, note, lifetime),
            name="create_invite",
        )

        try:
            await self._notifier.deliver(invite)
        except Exception as e:
            logger.warning(f"Invite {invite.invite_id[:8]}... stored but delivery failed: {e}")
        return invite

    async def _create_in(
        self,
        uow: UnitOfWork,
        practitioner_id: str,
        contact: str,
        client_name: Optional[str],
        note: Optional[str],
        lifetime: timedelta,
    ) -> ClientInvite:
        practitioner = await uow.accounts.get(practitioner_id)
        if practitioner is None or not practitioner.is_practitioner:
            raise NotFound(f"Practitioner {practitioner_id} not found")
        if not practitioner.is_approved:
            raise PractitionerUnavailable(f"Practitioner {practitioner_id} cannot invite clients")

        now = utc_now()
        invite = ClientInvite(
            invite_id=self._generate_token(),
            practitioner_id=practitioner_id,
            code=normalize_code(self._generate_code(self.settings.code_length)),
            client_contact=contact,
            client_name=client_name,
            note=note,
            created_at=now,
            expires_at=now + lifetime,
        )
        await uow.invites.add(invite)
        uow.collect_event(InviteCreated(
            aggregate_id=invite.invite_id,
            actor_id=practitioner_id,
            practitioner_id=practitioner_id,
            expires_at=invite.expires_at,
        ))
        return invite

    async def verify_invite(self, client_id: str, client_contact: str, code: str) -> Connection:
        """
        Redeem an invite and link the client to the issuing practitioner.

        The invite is consumed and the connection created in one
        transaction. An expired invite is marked expired before failing.

        Raises:
            InvalidInvite: Anything wrong with contact, code or invite state.
            AlreadyConnected: The client already has an active link.
        """
        contact = normalize_contact(client_contact)
        entered = normalize_code(code)
        if contact is None or not entered:
            raise InvalidInvite()

        connection = await self._store.write(
            lambda uow: self._verify_in(uow, client_id, contact, entered), name="verify_invite"
        )
        if connection is None:
            raise InvalidInvite()

        await self._connections.mirror_connection(client_id, connection)
        return connection

    async def _verify_in(
        self, uow: UnitOfWork, client_id: str, contact: str, entered: str
    ) -> Optional[Connection]:
        """Returns None when the invite just expired, so that marking it sticks."""
        invite = None
        for candidate in await uow.invites.find_by_contact(contact):
            if hmac.compare_digest(candidate.code, entered):
                invite = candidate
                break

        if invite is None or invite.status != InviteStatus.PENDING:
            raise InvalidInvite()

        now = utc_now()
        if invite.is_expired(now):
            await uow.invites.mark_expired(invite.invite_id)
            logger.info(f"Invite {invite.invite_id[:8]}... expired on verification")
            return None

        if not await uow.invites.mark_accepted(invite.invite_id, client_id, now):
            raise InvalidInvite()

        connection = await self._connections.connect_in(
            uow, client_id, invite.practitioner_id, origin=ConnectionOrigin.INVITE, actor_id=client_id
        )
        uow.collect_event(InviteAccepted(
            aggregate_id=invite.invite_id,
            actor_id=client_id,
            practitioner_id=invite.practitioner_id,
            client_id=client_id,
        ))
        return connection

    async def expire_stale_invites(self) -> int:
        """Mark every pending invite past its expiry as expired."""
        count = await self._store.write(
            lambda uow: uow.invites.expire_stale(utc_now()), name="expire_stale_invites"
        )
        if count:
            logger.info(f"Expired {count} stale invite(s)")
        return count

    async def list_invites(
        self, practitioner_id: str, status: Optional[InviteStatus] = None
    ) -> List[ClientInvite]:
        return await self._store.read(
            lambda uow: uow.invites.list_for_practitioner(practitioner_id, status),
            name="list_invites",
        )
