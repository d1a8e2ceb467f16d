from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests and local dev).
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER primary keys.
AutoIncrementId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class Employee(Base):
    __tablename__ = "employees"

    # Directory rows are owned by the organization service; this core only reads them.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    firm_id: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Null means no capacity limit.
    max_cases: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Case(Base):
    __tablename__ = "cases"
    __table_args__ = (
        UniqueConstraint("firm_id", "case_number", name="uq_cases_firm_case_number"),
        Index("ix_cases_firm_status", "firm_id", "status"),
        Index("ix_cases_firm_assignee", "firm_id", "assignee_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Owning firm is fixed at creation; repositories never update it.
    firm_id: Mapped[str] = mapped_column(String, index=True)
    organization_id: Mapped[str] = mapped_column(String)
    service_id: Mapped[str] = mapped_column(String)
    case_number: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String)
    priority: Mapped[str] = mapped_column(String)
    assignee_id: Mapped[str | None] = mapped_column(String, ForeignKey("employees.id"), nullable=True)
    flags: Mapped[list[str]] = mapped_column(JSONType, default=list)
    # Optimistic concurrency counter; bumped by every mutation.
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    # Salted PBKDF2 hash of the vault PIN; null until configured.
    vault_pin_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    created_by: Mapped[str] = mapped_column(String)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class CaseTransition(Base):
    __tablename__ = "case_transitions"
    __table_args__ = (Index("ix_case_transitions_case_created", "case_id", "created_at"),)

    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(String, ForeignKey("cases.id"))
    firm_id: Mapped[str] = mapped_column(String, index=True)
    from_status: Mapped[str] = mapped_column(String)
    to_status: Mapped[str] = mapped_column(String)
    actor_id: Mapped[str] = mapped_column(String)
    actor_role: Mapped[str | None] = mapped_column(String, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class CaseTransfer(Base):
    __tablename__ = "case_transfers"
    __table_args__ = (Index("ix_case_transfers_case_created", "case_id", "created_at"),)

    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(String, ForeignKey("cases.id"))
    firm_id: Mapped[str] = mapped_column(String, index=True)
    # Null when the case had no assignee before the transfer.
    from_employee_id: Mapped[str | None] = mapped_column(String, nullable=True)
    to_employee_id: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(Text)
    actor_id: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class VaultSession(Base):
    __tablename__ = "vault_sessions"
    __table_args__ = (
        # At most one unlocked lease per case; backs the exclusivity check under races.
        Index(
            "uq_vault_sessions_active_case",
            "case_id",
            unique=True,
            postgresql_where=text("state = 'UNLOCKED'"),
            sqlite_where=text("state = 'UNLOCKED'"),
        ),
        Index("ix_vault_sessions_state_heartbeat", "state", "last_heartbeat_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    firm_id: Mapped[str] = mapped_column(String, index=True)
    case_id: Mapped[str] = mapped_column(String, ForeignKey("cases.id"))
    holder_id: Mapped[str] = mapped_column(String)
    state: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_heartbeat_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AuditEntry(Base):
    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("ix_audit_entries_firm_occurred_at", "firm_id", "occurred_at"),
        Index("ix_audit_entries_firm_entity", "firm_id", "entity_type", "entity_id"),
        Index("ix_audit_entries_firm_actor", "firm_id", "actor_id"),
    )

    # Monotonic id breaks ties between entries sharing a timestamp.
    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    firm_id: Mapped[str] = mapped_column(String)
    entity_type: Mapped[str] = mapped_column(String)
    entity_id: Mapped[str] = mapped_column(String)
    action: Mapped[str] = mapped_column(String, index=True)
    outcome: Mapped[str] = mapped_column(String)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    # Sanitized before insert; never carries PINs or credentials.
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType, default=dict)
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
