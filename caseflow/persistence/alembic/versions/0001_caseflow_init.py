"""caseflow initial schema

Revision ID: 0001_caseflow_init
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_caseflow_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Employee directory rows are written by the organization service; cases only reference them.
    op.create_table(
        "employees",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("firm_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_cases", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_employees_firm_id", "employees", ["firm_id"], unique=False)
    op.create_index("ix_employees_user_id", "employees", ["user_id"], unique=False)

    op.create_table(
        "cases",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("firm_id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("service_id", sa.String(), nullable=False),
        sa.Column("case_number", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("assignee_id", sa.String(), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("flags", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("vault_pin_hash", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("firm_id", "case_number", name="uq_cases_firm_case_number"),
    )
    op.create_index("ix_cases_firm_id", "cases", ["firm_id"], unique=False)
    op.create_index("ix_cases_firm_status", "cases", ["firm_id", "status"], unique=False)
    op.create_index("ix_cases_firm_assignee", "cases", ["firm_id", "assignee_id"], unique=False)

    op.create_table(
        "case_transitions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("case_id", sa.String(), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("firm_id", sa.String(), nullable=False),
        sa.Column("from_status", sa.String(), nullable=False),
        sa.Column("to_status", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("actor_role", sa.String(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_case_transitions_firm_id", "case_transitions", ["firm_id"], unique=False)
    op.create_index(
        "ix_case_transitions_case_created", "case_transitions", ["case_id", "created_at"], unique=False
    )

    op.create_table(
        "case_transfers",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("case_id", sa.String(), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("firm_id", sa.String(), nullable=False),
        sa.Column("from_employee_id", sa.String(), nullable=True),
        sa.Column("to_employee_id", sa.String(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_case_transfers_firm_id", "case_transfers", ["firm_id"], unique=False)
    op.create_index(
        "ix_case_transfers_case_created", "case_transfers", ["case_id", "created_at"], unique=False
    )

    op.create_table(
        "vault_sessions",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("firm_id", sa.String(), nullable=False),
        sa.Column("case_id", sa.String(), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("holder_id", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_heartbeat_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_vault_sessions_firm_id", "vault_sessions", ["firm_id"], unique=False)
    # At most one unlocked lease per case, enforced by the database under races.
    op.create_index(
        "uq_vault_sessions_active_case",
        "vault_sessions",
        ["case_id"],
        unique=True,
        postgresql_where=sa.text("state = 'UNLOCKED'"),
    )
    op.create_index(
        "ix_vault_sessions_state_heartbeat",
        "vault_sessions",
        ["state", "last_heartbeat_at"],
        unique=False,
    )

    op.create_table(
        "audit_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("firm_id", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("actor_role", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
    )
    op.create_index("ix_audit_entries_occurred_at", "audit_entries", ["occurred_at"], unique=False)
    op.create_index("ix_audit_entries_action", "audit_entries", ["action"], unique=False)
    op.create_index("ix_audit_entries_request_id", "audit_entries", ["request_id"], unique=False)
    op.create_index(
        "ix_audit_entries_firm_occurred_at",
        "audit_entries",
        ["firm_id", "occurred_at"],
        unique=False,
    )
    op.create_index(
        "ix_audit_entries_firm_entity",
        "audit_entries",
        ["firm_id", "entity_type", "entity_id"],
        unique=False,
    )
    op.create_index("ix_audit_entries_firm_actor", "audit_entries", ["firm_id", "actor_id"], unique=False)


def downgrade() -> None:
    op.drop_table("audit_entries")
    op.drop_index("uq_vault_sessions_active_case", table_name="vault_sessions")
    op.drop_table("vault_sessions")
    op.drop_table("case_transfers")
    op.drop_table("case_transitions")
    op.drop_table("cases")
    op.drop_table("employees")
