"""
Request intake: the three ways a client asks to be linked.

- Path A: practitioner code (RequestIntake.request_by_code)
- Path B: practitioner-issued invite (InviteService)
- Path C: questionnaire matching (RequestIntake.submit_questionnaire)
"""

from .states import (
    RequestState,
    VALID_TRANSITIONS,
    can_transition,
    ensure_transition,
    state_of,
)
from .service import DeclineResult, RequestIntake
from .invites import InviteNotifier, InviteService, LoggingInviteNotifier

__all__ = [
    "RequestState",
    "VALID_TRANSITIONS",
    "can_transition",
    "ensure_transition",
    "state_of",
    "DeclineResult",
    "RequestIntake",
    "InviteNotifier",
    "InviteService",
    "LoggingInviteNotifier",
]
