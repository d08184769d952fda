"""
Practitioner-client linking.

The connection lifecycle of ClearTrack: how clients get linked to
practitioners, how the link is kept consistent between the Record Store and
the local cache, and how links are torn down and reassigned when a
practitioner leaves the rotation.
"""

from .errors import (
    LinkingError,
    NotFound,
    AlreadyConnected,
    InvalidInvite,
    NoEligiblePractitioner,
    Unconfirmed,
    StoreUnavailable,
    PractitionerUnavailable,
    PermissionDenied,
    InvalidRequestState,
    InvalidStatusTransition,
    InvalidInput,
    AuthError,
)
from .record_store import ReadResult, ReadSource, RecordStore
from .connection_manager import ConnectionManager
from .matching import MatchingEngine, normalize_tags
from .reassignment import (
    ReassignmentOrchestrator,
    ReassignmentOutcome,
    ReassignmentReport,
    ReassignmentState,
)
from .intake import (
    DeclineResult,
    InviteNotifier,
    InviteService,
    LoggingInviteNotifier,
    RequestIntake,
    RequestState,
)
from .admin import DeletionResult, FraudSweepResult, PractitionerAdministration
from .applications import ApplicationService
from .accounts import AccountService
from .reconciliation import Reconciler, ReconciliationReport
from .identity import IdentityProvider, JwtIdentityProvider
from .services import (
    LinkingServices,
    build_linking_services,
    get_linking_services,
    register_linking_services,
)

__all__ = [
    # Errors
    "LinkingError",
    "NotFound",
    "AlreadyConnected",
    "InvalidInvite",
    "NoEligiblePractitioner",
    "Unconfirmed",
    "StoreUnavailable",
    "PractitionerUnavailable",
    "PermissionDenied",
    "InvalidRequestState",
    "InvalidStatusTransition",
    "InvalidInput",
    "AuthError",
    # Record Store
    "ReadResult",
    "ReadSource",
    "RecordStore",
    # Services
    "ConnectionManager",
    "MatchingEngine",
    "normalize_tags",
    "ReassignmentOrchestrator",
    "ReassignmentOutcome",
    "ReassignmentReport",
    "ReassignmentState",
    "DeclineResult",
    "InviteNotifier",
    "InviteService",
    "LoggingInviteNotifier",
    "RequestIntake",
    "RequestState",
    "DeletionResult",
    "FraudSweepResult",
    "PractitionerAdministration",
    "ApplicationService",
    "AccountService",
    "Reconciler",
    "ReconciliationReport",
    "IdentityProvider",
    "JwtIdentityProvider",
    # Wiring
    "LinkingServices",
    "build_linking_services",
    "get_linking_services",
    "register_linking_services",
]
