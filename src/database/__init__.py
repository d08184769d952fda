"""
Record Store persistence layer.

This module provides:
- SQLAlchemy ORM models for accounts, connections, requests, invites and
  practitioner applications
- Async database engine with connection pooling
- Repositories and the Unit of Work that coordinates them
"""

from .models import (
    Base,
    AccountRecord,
    ConnectionRecord,
    ConnectionRequestRecord,
    ClientInviteRecord,
    PractitionerApplicationRecord,
)

from .async_engine import (
    create_engine,
    get_async_engine,
    get_async_session_factory,
    get_session_factory,
    init_database,
    close_database,
    DatabaseHealth,
)

from .unit_of_work import (
    UnitOfWork,
    UnitOfWorkFactory,
)

from .repositories import (
    AccountRepository,
    ConnectionRepository,
    ConnectionRequestRepository,
    ClientInviteRepository,
    PractitionerApplicationRepository,
)

__all__ = [
    # Models
    "Base",
    "AccountRecord",
    "ConnectionRecord",
    "ConnectionRequestRecord",
    "ClientInviteRecord",
    "PractitionerApplicationRecord",
    # Async Engine
    "create_engine",
    "get_async_engine",
    "get_async_session_factory",
    "get_session_factory",
    "init_database",
    "close_database",
    "DatabaseHealth",
    # Unit of Work
    "UnitOfWork",
    "UnitOfWorkFactory",
    # Repositories
    "AccountRepository",
    "ConnectionRepository",
    "ConnectionRequestRepository",
    "ClientInviteRepository",
    "PractitionerApplicationRepository",
]
