"""
Connection request state machine.

Shared by every intake path:

    SUBMITTED -> PENDING -> ACCEPTED
                        \-> DECLINED
    SUBMITTED -> UNASSIGNED -> PENDING

SUBMITTED is transient: a request is persisted already in its first real
state. ACCEPTED and DECLINED are terminal.
"""

from enum import Enum
from typing import Dict, Set

from domain.entities import ConnectionRequest, RequestStatus

from ..errors import InvalidRequestState


class RequestState(str, Enum):
    """Lifecycle states of a connection request."""
    SUBMITTED = "submitted"
    PENDING = "pending"
    UNASSIGNED = "unassigned"
    ACCEPTED = "accepted"
    DECLINED = "declined"

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self]

    @property
    def status(self) -> RequestStatus:
        """Persisted status for this state."""
        if self == RequestState.SUBMITTED:
            raise InvalidRequestState("A submitted request has no persisted status yet")
        return RequestStatus(self.value)


VALID_TRANSITIONS: Dict[RequestState, Set[RequestState]] = {
    RequestState.SUBMITTED: {RequestState.PENDING, RequestState.UNASSIGNED},
    RequestState.UNASSIGNED: {RequestState.PENDING},
    RequestState.PENDING: {RequestState.ACCEPTED, RequestState.DECLINED},
    RequestState.ACCEPTED: set(),  # Terminal
    RequestState.DECLINED: set(),  # Terminal
}


def can_transition(from_state: RequestState, to_state: RequestState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def ensure_transition(from_state: RequestState, to_state: RequestState) -> None:
    """Raise InvalidRequestState unless from_state -> to_state is allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidRequestState(
            f"Cannot move a request from {from_state.value} to {to_state.value}",
            {"from": from_state.value, "to": to_state.value},
        )


def state_of(request: ConnectionRequest) -> RequestState:
    return RequestState(request.status.value)
