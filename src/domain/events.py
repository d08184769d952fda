"""
Domain events for the connection lifecycle.

Events are immutable records of something that already happened. They are
collected by the unit of work and published on the event bus only after the
transaction that produced them commits, so subscribers never observe a link
that was rolled back.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID, uuid4
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .entities import utc_now


class EventType(str, Enum):
    """Types of domain events."""
    # Connection events
    CONNECTION_CREATED = "connection.created"
    CONNECTION_ENDED = "connection.ended"
    CONNECTION_REASSIGNED = "connection.reassigned"

    # Request intake events
    REQUEST_SUBMITTED = "request.submitted"
    REQUEST_DECIDED = "request.decided"
    INVITE_CREATED = "invite.created"
    INVITE_ACCEPTED = "invite.accepted"

    # Administration events
    PRACTITIONER_STATUS_CHANGED = "practitioner.status_changed"
    APPLICATION_SUBMITTED = "application.submitted"
    APPLICATION_REVIEWED = "application.reviewed"
    REASSIGNMENT_COMPLETED = "reassignment.completed"


class DomainEvent(BaseModel):
    """
    Base class for all domain events.

    All events are immutable and contain:
    - Unique event ID
    - When the event occurred
    - The account that triggered it, when known
    """
    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, description="Event schema version")

    actor_id: Optional[str] = Field(default=None, description="Account that caused the event")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    aggregate_id: Optional[str] = Field(
        default=None,
        description="ID of the record this event belongs to"
    )
    aggregate_type: Optional[str] = None


# =============================================================================
# CONNECTION EVENTS
# =============================================================================

class ConnectionCreated(DomainEvent):
    """Raised when a client becomes linked to a practitioner."""
    event_type: EventType = EventType.CONNECTION_CREATED
    aggregate_type: str = "connection"

    client_id: str
    practitioner_id: str
    origin: str


class ConnectionEnded(DomainEvent):
    """Raised when a client disconnects."""
    event_type: EventType = EventType.CONNECTION_ENDED
    aggregate_type: str = "connection"

    client_id: str
    practitioner_id: str
    reason: Optional[str] = None


class ConnectionReassigned(DomainEvent):
    """Raised when a client is migrated to a new practitioner."""
    event_type: EventType = EventType.CONNECTION_REASSIGNED
    aggregate_type: str = "connection"

    client_id: str
    previous_practitioner_id: str
    practitioner_id: str
    reason: str


# =============================================================================
# INTAKE EVENTS
# =============================================================================

class RequestSubmitted(DomainEvent):
    """Raised when a connection request is created or re-matched."""
    event_type: EventType = EventType.REQUEST_SUBMITTED
    aggregate_type: str = "connection_request"

    client_id: str
    practitioner_id: Optional[str] = None
    path: str
    status: str


class RequestDecided(DomainEvent):
    """Raised when a practitioner accepts or declines a request."""
    event_type: EventType = EventType.REQUEST_DECIDED
    aggregate_type: str = "connection_request"

    client_id: str
    practitioner_id: str
    accepted: bool
    next_request_id: Optional[str] = None


class InviteCreated(DomainEvent):
    """Raised when a practitioner issues a client invite. Never carries the code."""
    event_type: EventType = EventType.INVITE_CREATED
    aggregate_type: str = "client_invite"

    practitioner_id: str
    expires_at: datetime


class InviteAccepted(DomainEvent):
    """Raised when a client redeems an invite."""
    event_type: EventType = EventType.INVITE_ACCEPTED
    aggregate_type: str = "client_invite"

    practitioner_id: str
    client_id: str


# =============================================================================
# ADMINISTRATION EVENTS
# =============================================================================

class PractitionerStatusChanged(DomainEvent):
    """Raised on every admin status transition."""
    event_type: EventType = EventType.PRACTITIONER_STATUS_CHANGED
    aggregate_type: str = "account"

    practitioner_id: str
    old_status: Optional[str] = None
    new_status: str
    fraud_appeal_deadline: Optional[datetime] = None


class ApplicationSubmitted(DomainEvent):
    """Raised when someone applies to become a practitioner."""
    event_type: EventType = EventType.APPLICATION_SUBMITTED
    aggregate_type: str = "practitioner_application"

    account_id: str


class ApplicationReviewed(DomainEvent):
    """Raised when an admin approves or rejects an application."""
    event_type: EventType = EventType.APPLICATION_REVIEWED
    aggregate_type: str = "practitioner_application"

    account_id: str
    approved: bool


class ReassignmentCompleted(DomainEvent):
    """Raised when a reassignment sweep for one practitioner finishes."""
    event_type: EventType = EventType.REASSIGNMENT_COMPLETED
    aggregate_type: str = "account"

    practitioner_id: str
    reason: str
    succeeded: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
