"""
Errors raised by the linking services.

Every error carries a stable machine-readable ``code`` and the HTTP status
the web layer answers with. NotFound, AlreadyConnected and InvalidInvite are
terminal and surface directly; StoreUnavailable is transient.
"""

from typing import Any, Dict, Optional


class LinkingError(Exception):
    """Base exception for connection lifecycle errors."""

    code = "linking_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFound(LinkingError):
    """Account, connection, request or invite is missing."""
    code = "not_found"
    status_code = 404


class AlreadyConnected(LinkingError):
    """The client already has an active link."""
    code = "already_connected"
    status_code = 409


class InvalidInvite(LinkingError):
    """
    Invite verification failed.

    Deliberately one error for wrong code, unknown contact, expired and
    already-used invites.
    """
    code = "invalid_invite"
    status_code = 400

    def __init__(self, message: str = "Invalid or expired invite code"):
        super().__init__(message)


class NoEligiblePractitioner(LinkingError):
    """Matching found no candidate. Bulk operations report it instead of raising."""
    code = "no_eligible_practitioner"
    status_code = 409


class Unconfirmed(LinkingError):
    """The write was journaled locally but not yet confirmed by the Record Store."""
    code = "unconfirmed"
    status_code = 202

    def __init__(self, message: str, pending_write_id: str):
        super().__init__(message, {"pending_write_id": pending_write_id})
        self.pending_write_id = pending_write_id


class StoreUnavailable(LinkingError):
    """Transient Record Store failure (timeout, lost connection, locked database)."""
    code = "store_unavailable"
    status_code = 503


class PractitionerUnavailable(LinkingError):
    """The practitioner exists but is not approved."""
    code = "practitioner_unavailable"
    status_code = 409


class PermissionDenied(LinkingError):
    """The caller may not act on this record."""
    code = "permission_denied"
    status_code = 403


class InvalidRequestState(LinkingError):
    """A connection request is not in a state that allows the operation."""
    code = "invalid_request_state"
    status_code = 409


class InvalidStatusTransition(LinkingError):
    """An admin status change is not allowed from the current status."""
    code = "invalid_status_transition"
    status_code = 409


class InvalidInput(LinkingError):
    """Caller-supplied data failed validation."""
    code = "invalid_input"
    status_code = 422


class AuthError(LinkingError):
    """Credentials or bearer token were rejected by the identity provider."""
    code = "auth_error"
    status_code = 401
