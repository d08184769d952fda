"""
SQLAlchemy ORM models for the Record Store.

Tables:
- accounts: clients, practitioners and admins, including the single-valued
  connected-practitioner pointer and the practitioner rotation cursor
- connections: append-only link history
- connection_requests: code-path and questionnaire-path requests
- client_invites: practitioner-issued invites
- practitioner_applications: approval workflow history

Invariants enforced by the schema:
- at most one ACTIVE connection per client (partial unique index)
- at most one PENDING code-path request per (client, practitioner)
- practitioner codes are unique
"""


from sqlalchemy import (
    Column, String, Integer, DateTime, Text, Enum, ForeignKey, Index,
    JSON, text
)
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from domain.entities import (
    AccountRole,
    ApplicationStatus,
    ConnectionOrigin,
    ConnectionStatus,
    InviteStatus,
    PractitionerStatus,
    RequestPath,
    RequestStatus,
    utc_now,
)


# Cross-database compatible JSON type
# Uses JSONB on PostgreSQL, JSON on SQLite/others
class JSONB(TypeDecorator):
    """A portable JSONB type that works with both PostgreSQL and SQLite."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_JSONB())
        return dialect.type_descriptor(JSON())


Base = declarative_base()


class AccountRecord(Base):
    """
    Account Record - one row per identity-provider account.

    Primary Key: account_id (issued by the identity provider)
    Secondary Key: practitioner_code (unique, practitioners only)
    """
    __tablename__ = "accounts"

    account_id = Column(String(128), primary_key=True)
    role = Column(Enum(AccountRole), nullable=False, index=True)
    email = Column(String(255), nullable=True, index=True)
    display_name = Column(String(200), nullable=True)

    # Written only by the connection manager, always by compare-and-set
    connected_practitioner_id = Column(
        String(128),
        ForeignKey("accounts.account_id"),
        nullable=True,
        index=True,
    )

    # Practitioner fields
    practitioner_code = Column(String(16), nullable=True, unique=True)
    practitioner_status = Column(Enum(PractitionerStatus), nullable=True, index=True)
    fraud_appeal_deadline = Column(DateTime, nullable=True)
    rotation_cursor = Column(Integer, nullable=False, default=0)
    specializations = Column(JSONB, nullable=False, default=list)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_account_role_status', 'role', 'practitioner_status'),
    )

    def __repr__(self):
        return f"<Account(id={self.account_id}, role={self.role})>"


class ConnectionRecord(Base):
    """
    Connection Record - immutable audit trail of client-practitioner links.

    Rows only ever move from ACTIVE to DISCONNECTED or REASSIGNED.
    """
    __tablename__ = "connections"

    connection_id = Column(String(36), primary_key=True)
    client_id = Column(String(128), ForeignKey("accounts.account_id"), nullable=False, index=True)
    practitioner_id = Column(String(128), ForeignKey("accounts.account_id"), nullable=False, index=True)

    status = Column(Enum(ConnectionStatus), nullable=False, default=ConnectionStatus.ACTIVE)
    origin = Column(Enum(ConnectionOrigin), nullable=False, default=ConnectionOrigin.DIRECT)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    ended_at = Column(DateTime, nullable=True)

    # Provenance, set on reassignment
    previous_practitioner_id = Column(String(128), nullable=True)
    reason = Column(String(100), nullable=True)

    __table_args__ = (
        Index(
            'uq_connection_one_active_per_client',
            'client_id',
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index('ix_connection_practitioner_status', 'practitioner_id', 'status'),
    )

    def __repr__(self):
        return (
            f"<Connection(id={self.connection_id}, client={self.client_id}, "
            f"practitioner={self.practitioner_id}, status={self.status})>"
        )


class ConnectionRequestRecord(Base):
    """
    Connection Request Record - a client's ask awaiting a practitioner decision.

    Questionnaire-path requests form a chain through parent_request_id as
    practitioners decline and the request is re-matched.
    """
    __tablename__ = "connection_requests"

    request_id = Column(String(36), primary_key=True)
    client_id = Column(String(128), ForeignKey("accounts.account_id"), nullable=False, index=True)
    practitioner_id = Column(String(128), ForeignKey("accounts.account_id"), nullable=True, index=True)

    path = Column(Enum(RequestPath), nullable=False)
    status = Column(Enum(RequestStatus), nullable=False, default=RequestStatus.PENDING)

    needed_specializations = Column(JSONB, nullable=False, default=list)
    declined_by = Column(JSONB, nullable=False, default=list)
    parent_request_id = Column(String(36), ForeignKey("connection_requests.request_id"), nullable=True)
    message = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    decided_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index(
            'uq_request_one_pending_code_request',
            'client_id', 'practitioner_id',
            unique=True,
            sqlite_where=text("status = 'PENDING' AND path = 'PRACTITIONER_CODE'"),
            postgresql_where=text("status = 'PENDING' AND path = 'PRACTITIONER_CODE'"),
        ),
        Index('ix_request_practitioner_status', 'practitioner_id', 'status'),
        Index('ix_request_client_path', 'client_id', 'path', 'created_at'),
    )

    def __repr__(self):
        return f"<ConnectionRequest(id={self.request_id}, path={self.path}, status={self.status})>"


class ClientInviteRecord(Base):
    """
    Client Invite Record - consumed exactly once, otherwise expires.
    """
    __tablename__ = "client_invites"

    invite_id = Column(String(64), primary_key=True)
    practitioner_id = Column(String(128), ForeignKey("accounts.account_id"), nullable=False, index=True)
    code = Column(String(16), nullable=False)
    client_contact = Column(String(255), nullable=False)
    client_name = Column(String(200), nullable=True)
    note = Column(Text, nullable=True)

    status = Column(Enum(InviteStatus), nullable=False, default=InviteStatus.PENDING)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    expires_at = Column(DateTime, nullable=False)
    accepted_by = Column(String(128), nullable=True)
    accepted_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_invite_contact_status', 'client_contact', 'status'),
        Index('ix_invite_status_expiry', 'status', 'expires_at'),
    )

    def __repr__(self):
        return f"<ClientInvite(id={self.invite_id}, status={self.status})>"


class PractitionerApplicationRecord(Base):
    """
    Practitioner Application Record - history of the approval workflow.

    Never consulted for matching or linking; the account status is the gate.
    """
    __tablename__ = "practitioner_applications"

    application_id = Column(String(36), primary_key=True)
    account_id = Column(String(128), ForeignKey("accounts.account_id"), nullable=False, index=True)

    email = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    practice_name = Column(String(200), nullable=True)
    qualifications = Column(Text, nullable=True)
    years_experience = Column(Integer, nullable=False, default=0)
    specializations = Column(JSONB, nullable=False, default=list)

    status = Column(Enum(ApplicationStatus), nullable=False, default=ApplicationStatus.PENDING, index=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(String(128), nullable=True)
    review_note = Column(Text, nullable=True)

    def __repr__(self):
        return f"<PractitionerApplication(id={self.application_id}, status={self.status})>"
