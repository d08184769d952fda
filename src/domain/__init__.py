"""
Domain layer for the practitioner-client connection lifecycle.

Contains the entities, domain events, the in-process event bus and the
repository interfaces the linking services are written against.
"""

from .entities import (
    Account,
    AccountRole,
    ApplicationStatus,
    ClientInvite,
    Connection,
    ConnectionOrigin,
    ConnectionRequest,
    ConnectionStatus,
    InviteStatus,
    LinkReason,
    PractitionerApplication,
    PractitionerStatus,
    RequestPath,
    RequestStatus,
    utc_now,
)
from .events import (
    DomainEvent,
    EventType,
    ConnectionCreated,
    ConnectionEnded,
    ConnectionReassigned,
    RequestSubmitted,
    RequestDecided,
    InviteCreated,
    InviteAccepted,
    PractitionerStatusChanged,
    ApplicationSubmitted,
    ApplicationReviewed,
    ReassignmentCompleted,
)
from .repositories import (
    IAccountRepository,
    IConnectionRepository,
    IConnectionRequestRepository,
    IClientInviteRepository,
    IPractitionerApplicationRepository,
    IUnitOfWork,
)
from .event_bus import (
    EventBus,
    LoggingEventHandler,
    get_event_bus,
    publish_event,
)

__all__ = [
    # Entities
    "Account",
    "AccountRole",
    "ApplicationStatus",
    "ClientInvite",
    "Connection",
    "ConnectionOrigin",
    "ConnectionRequest",
    "ConnectionStatus",
    "InviteStatus",
    "LinkReason",
    "PractitionerApplication",
    "PractitionerStatus",
    "RequestPath",
    "RequestStatus",
    "utc_now",
    # Events
    "DomainEvent",
    "EventType",
    "ConnectionCreated",
    "ConnectionEnded",
    "ConnectionReassigned",
    "RequestSubmitted",
    "RequestDecided",
    "InviteCreated",
    "InviteAccepted",
    "PractitionerStatusChanged",
    "ApplicationSubmitted",
    "ApplicationReviewed",
    "ReassignmentCompleted",
    # Repositories
    "IAccountRepository",
    "IConnectionRepository",
    "IConnectionRequestRepository",
    "IClientInviteRepository",
    "IPractitionerApplicationRepository",
    "IUnitOfWork",
    # Event bus
    "EventBus",
    "LoggingEventHandler",
    "get_event_bus",
    "publish_event",
]
