"""
Repository interfaces for the connection lifecycle.

These abstract interfaces define the persistence operations the linking
services rely on. Every method that changes link state is a compare-and-set:
it returns False when the row was not in the expected state, and the caller
decides what that means.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from .entities import (
    Account,
    ApplicationStatus,
    ClientInvite,
    Connection,
    ConnectionRequest,
    ConnectionStatus,
    InviteStatus,
    PractitionerApplication,
    PractitionerStatus,
    RequestStatus,
)


class IAccountRepository(ABC):
    """Accounts, including the connected-practitioner pointer and rotation cursor."""

    @abstractmethod
    async def get(self, account_id: str) -> Optional[Account]:
        pass

    @abstractmethod
    async def add(self, account: Account) -> None:
        pass

    @abstractmethod
    async def get_by_practitioner_code(self, code: str) -> Optional[Account]:
        """Resolve a practitioner by code through the unique index."""
        pass

    @abstractmethod
    async def practitioner_code_exists(self, code: str) -> bool:
        pass

    @abstractmethod
    async def claim_practitioner(self, client_id: str, practitioner_id: str) -> bool:
        """
        Point a client at a practitioner only if the client has no pointer.

        Returns:
            True if this call set the pointer.
        """
        pass

    @abstractmethod
    async def release_practitioner(self, client_id: str, practitioner_id: str) -> bool:
        """Clear the pointer only if it still points at practitioner_id."""
        pass

    @abstractmethod
    async def swap_practitioner(
        self, client_id: str, from_practitioner_id: str, to_practitioner_id: str
    ) -> bool:
        """Move the pointer only if it still points at from_practitioner_id."""
        pass

    @abstractmethod
    async def list_connected_clients(self, practitioner_id: str) -> List[Account]:
        pass

    @abstractmethod
    async def count_connected_clients(self, practitioner_id: str) -> int:
        pass

    @abstractmethod
    async def list_practitioners(
        self, status: Optional[PractitionerStatus] = None
    ) -> List[Account]:
        """List practitioner accounts, oldest first."""
        pass

    @abstractmethod
    async def advance_rotation_cursor(self, practitioner_id: str, seen_cursor: int) -> bool:
        """Increment the cursor by one only if it still equals seen_cursor."""
        pass

    @abstractmethod
    async def set_practitioner_status(
        self,
        account_id: str,
        new_status: PractitionerStatus,
        *,
        expected_status: Optional[PractitionerStatus],
        fraud_appeal_deadline: Optional[datetime] = None,
    ) -> bool:
        pass

    @abstractmethod
    async def assign_practitioner_code(self, account_id: str, code: str) -> bool:
        """Set the code only while the account has none."""
        pass

    @abstractmethod
    async def set_specializations(self, account_id: str, specializations: Sequence[str]) -> None:
        pass

    @abstractmethod
    async def list_fraud_past_deadline(self, now: datetime) -> List[Account]:
        pass


class IConnectionRepository(ABC):
    """Append-only connection history."""

    @abstractmethod
    async def add(self, connection: Connection) -> None:
        pass

    @abstractmethod
    async def get_active(self, client_id: str) -> Optional[Connection]:
        pass

    @abstractmethod
    async def end(
        self,
        connection_id: str,
        status: ConnectionStatus,
        *,
        ended_at: datetime,
        reason: Optional[str] = None,
        previous_practitioner_id: Optional[str] = None,
    ) -> bool:
        """Close an active connection. Returns False if it was not active."""
        pass

    @abstractmethod
    async def history(self, client_id: str) -> List[Connection]:
        """All connections for a client, oldest first."""
        pass


class IConnectionRequestRepository(ABC):
    """Connection requests from the code and questionnaire paths."""

    @abstractmethod
    async def add(self, request: ConnectionRequest) -> None:
        pass

    @abstractmethod
    async def get(self, request_id: str) -> Optional[ConnectionRequest]:
        pass

    @abstractmethod
    async def find_pending_code_request(
        self, client_id: str, practitioner_id: str
    ) -> Optional[ConnectionRequest]:
        pass

    @abstractmethod
    async def latest_questionnaire_request(self, client_id: str) -> Optional[ConnectionRequest]:
        pass

    @abstractmethod
    async def list_pending_for_practitioner(self, practitioner_id: str) -> List[ConnectionRequest]:
        pass

    @abstractmethod
    async def list_for_client(self, client_id: str) -> List[ConnectionRequest]:
        pass

    @abstractmethod
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
        """Move a request between statuses only if it is still in from_status."""
        pass


class IClientInviteRepository(ABC):
    """Practitioner-issued client invites."""

    @abstractmethod
    async def add(self, invite: ClientInvite) -> None:
        pass

    @abstractmethod
    async def get(self, invite_id: str) -> Optional[ClientInvite]:
        pass

    @abstractmethod
    async def find_by_contact(self, client_contact: str) -> List[ClientInvite]:
        """Invites for a contact, newest first."""
        pass

    @abstractmethod
    async def mark_accepted(self, invite_id: str, client_id: str, accepted_at: datetime) -> bool:
        pass

    @abstractmethod
    async def mark_expired(self, invite_id: str) -> bool:
        pass

    @abstractmethod
    async def expire_stale(self, now: datetime) -> int:
        pass

    @abstractmethod
    async def list_for_practitioner(
        self, practitioner_id: str, status: Optional[InviteStatus] = None
    ) -> List[ClientInvite]:
        pass


class IPractitionerApplicationRepository(ABC):
    """History of practitioner applications."""

    @abstractmethod
    async def add(self, application: PractitionerApplication) -> None:
        pass

    @abstractmethod
    async def get(self, application_id: str) -> Optional[PractitionerApplication]:
        pass

    @abstractmethod
    async def find_pending_for_account(self, account_id: str) -> Optional[PractitionerApplication]:
        pass

    @abstractmethod
    async def list_applications(self, status: Optional[ApplicationStatus] = None) -> List[PractitionerApplication]:
        pass

    @abstractmethod
    async def review(
        self,
        application_id: str,
        status: ApplicationStatus,
        *,
        reviewed_by: str,
        reviewed_at: datetime,
        note: Optional[str] = None,
    ) -> bool:
        """Record a decision on a pending application."""
        pass


class IUnitOfWork(ABC):
    """
    Unit of Work interface.

    Coordinates the repositories inside one Record Store transaction.
    """

    @property
    @abstractmethod
    def accounts(self) -> IAccountRepository:
        pass

    @property
    @abstractmethod
    def connections(self) -> IConnectionRepository:
        pass

    @property
    @abstractmethod
    def requests(self) -> IConnectionRequestRepository:
        pass

    @property
    @abstractmethod
    def invites(self) -> IClientInviteRepository:
        pass

    @property
    @abstractmethod
    def applications(self) -> IPractitionerApplicationRepository:
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass
