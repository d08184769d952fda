"""Repository implementations for the Record Store."""

from .account_repository import AccountRepository
from .connection_repository import ConnectionRepository
from .request_repository import ConnectionRequestRepository
from .invite_repository import ClientInviteRepository
from .application_repository import PractitionerApplicationRepository

__all__ = [
    "AccountRepository",
    "ConnectionRepository",
    "ConnectionRequestRepository",
    "ClientInviteRepository",
    "PractitionerApplicationRepository",
]
