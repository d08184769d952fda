"""
FastAPI Routers - one module per concern.

- connections: client link, practitioner roster, link checks
- intake: code requests, invites, questionnaire, decisions, applications
- admin: practitioner status, application review, fraud sweep
- health: liveness, readiness and dependency status
"""

from .connections import router as connections_router
from .intake import router as intake_router
from .admin import router as admin_router
from .health import router as health_router

__all__ = [
    "connections_router",
    "intake_router",
    "admin_router",
    "health_router",
]
