"""
Domain entities for the practitioner-client connection lifecycle.

Entities are the service-layer view of Record Store rows. They are plain
pydantic models: repositories build them from ORM records and services hand
them to callers, the cache and the HTTP layer through ``to_dict()``.

Timestamps are naive UTC, matching the DateTime columns they come from.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMERATIONS
# =============================================================================

class AccountRole(str, Enum):
    """Who an account belongs to."""
    CLIENT = "client"
    PRACTITIONER = "practitioner"
    ADMIN = "admin"


class PractitionerStatus(str, Enum):
    """Lifecycle of a practitioner account. Only admin operations change it."""
    PENDING = "pending"
    APPROVED = "approved"
    SUSPENDED = "suspended"
    FRAUD = "fraud"
    DELETED = "deleted"


class ConnectionStatus(str, Enum):
    """Status of one historical client-practitioner link."""
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    REASSIGNED = "reassigned"


class ConnectionOrigin(str, Enum):
    """How a link came to exist."""
    DIRECT = "direct"
    PRACTITIONER_CODE = "practitioner_code"
    INVITE = "invite"
    QUESTIONNAIRE = "questionnaire"
    REASSIGNMENT = "reassignment"


class RequestPath(str, Enum):
    """Entry path that produced a connection request."""
    PRACTITIONER_CODE = "practitioner_code"
    QUESTIONNAIRE = "questionnaire"


class RequestStatus(str, Enum):
    """Persisted status of a connection request."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    UNASSIGNED = "unassigned"


class InviteStatus(str, Enum):
    """Status of a practitioner-issued client invite."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class ApplicationStatus(str, Enum):
    """Status of a practitioner application (history only)."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LinkReason(str, Enum):
    """Reason tags written on ended or migrated connections."""
    CLIENT_DISCONNECTED = "client_disconnected"
    PRACTITIONER_DELETED = "practitioner_deleted"
    FRAUD_APPEAL_DEADLINE_EXPIRED = "fraud_appeal_deadline_expired"


# =============================================================================
# ENTITIES
# =============================================================================

class Account(BaseModel):
    """
    A client, practitioner or admin identity record.

    Invariants:
    - account_id is issued by the identity provider and never changes
    - connected_practitioner_id is single valued and written only by the
      connection manager
    - practitioner_status is written only by admin operations
    """
    account_id: str
    role: AccountRole
    email: Optional[str] = None
    display_name: Optional[str] = None

    connected_practitioner_id: Optional[str] = None

    # Practitioner-only fields
    practitioner_code: Optional[str] = None
    practitioner_status: Optional[PractitionerStatus] = None
    fraud_appeal_deadline: Optional[datetime] = None
    rotation_cursor: int = 0
    specializations: List[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    @property
    def is_client(self) -> bool:
        return self.role == AccountRole.CLIENT

    @property
    def is_practitioner(self) -> bool:
        return self.role == AccountRole.PRACTITIONER

    @property
    def is_approved(self) -> bool:
        """True when the practitioner may receive new links."""
        return (
            self.is_practitioner
            and self.practitioner_status == PractitionerStatus.APPROVED
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class Connection(BaseModel):
    """
    One link between a client and a practitioner.

    Rows are never deleted. At most one row per client is ACTIVE.
    """
    connection_id: str
    client_id: str
    practitioner_id: str
    status: ConnectionStatus = ConnectionStatus.ACTIVE
    origin: ConnectionOrigin = ConnectionOrigin.DIRECT
    created_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    previous_practitioner_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == ConnectionStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class ConnectionRequest(BaseModel):
    """A client's ask to be linked, awaiting a practitioner decision."""
    request_id: str
    client_id: str
    practitioner_id: Optional[str] = None
    path: RequestPath
    status: RequestStatus = RequestStatus.PENDING
    needed_specializations: List[str] = Field(default_factory=list)
    declined_by: List[str] = Field(default_factory=list)
    parent_request_id: Optional[str] = None
    message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    decided_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class ClientInvite(BaseModel):
    """A practitioner-issued, code-protected token a client redeems once."""
    invite_id: str
    practitioner_id: str
    code: str
    client_contact: str
    client_name: Optional[str] = None
    note: Optional[str] = None
    status: InviteStatus = InviteStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    accepted_by: Optional[str] = None
    accepted_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def to_dict(self, include_code: bool = True) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        if not include_code:
            data.pop("code", None)
        return data


class PractitionerApplication(BaseModel):
    """Historical record of a practitioner's approval workflow."""
    application_id: str
    account_id: str
    email: str
    first_name: str
    last_name: str
    practice_name: Optional[str] = None
    qualifications: Optional[str] = None
    years_experience: int = 0
    specializations: List[str] = Field(default_factory=list)
    status: ApplicationStatus = ApplicationStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    review_note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
