"""Initial schema: users, policies, items, claims, ledger, audit, notifications

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

Enum-valued columns are plain VARCHARs holding the enum value. Item,
claim and claim item rows carry a ``version`` counter for optimistic
locking.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False))
    return cols


def upgrade() -> None:
    # ── Users ──
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("staff_id", sa.String(32), nullable=True),
        sa.Column("app_role", sa.String(20), nullable=False, server_default="Customer"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ── Policies and membership ──
    op.create_table(
        "policies",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="Household"),
        sa.Column("household_id", sa.String(64), nullable=True),
        sa.Column("cost_center", sa.String(64), nullable=True),
        sa.Column("account", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "policy_users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("policies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint("policy_id", "user_id", name="uq_policy_user"),
    )
    op.create_index("ix_policy_users_policy_id", "policy_users", ["policy_id"])
    op.create_index("ix_policy_users_user_id", "policy_users", ["user_id"])

    op.create_table(
        "policy_dependents",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("policies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("relationship", sa.String(20), nullable=False, server_default="Child"),
        sa.Column("country", sa.String(64), nullable=True),
        sa.Column("child_birth_year", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_policy_dependents_policy_id", "policy_dependents", ["policy_id"])

    op.create_table(
        "strikes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("policies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_strikes_policy_id", "strikes", ["policy_id"])

    # ── Items ──
    op.create_table(
        "item_categories",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("help_text", sa.Text(), nullable=True),
        sa.Column("auto_approve_max", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("require_make_model", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(20), nullable=False, server_default="Enabled"),
    )

    op.create_table(
        "items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("policies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.Uuid(), sa.ForeignKey("item_categories.id"), nullable=False),
        sa.Column("policy_user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "policy_dependent_id", sa.Uuid(),
            sa.ForeignKey("policy_dependents.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("make", sa.String(100), nullable=True),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("serial_number", sa.String(100), nullable=True),
        sa.Column("country", sa.String(64), nullable=True),
        sa.Column("coverage_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("coverage_status", sa.String(20), nullable=False, server_default="Draft"),
        sa.Column("status_change", sa.String(200), nullable=False, server_default=""),
        sa.Column("status_reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("coverage_start_date", sa.Date(), nullable=True),
        sa.Column("paid_through_date", sa.Date(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_items_policy_id", "items", ["policy_id"])
    op.create_index("ix_items_coverage_status", "items", ["coverage_status"])

    # ── Claims ──
    op.create_table(
        "claims",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("policies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reference_number", sa.String(7), nullable=False),
        sa.Column("incident_date", sa.Date(), nullable=False),
        sa.Column("incident_type", sa.String(20), nullable=False),
        sa.Column("incident_description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="Draft"),
        sa.Column("status_change", sa.String(200), nullable=False, server_default=""),
        sa.Column("status_reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("review_date", sa.DateTime(), nullable=True),
        sa.Column("reviewer_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("total_payout", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_claims_policy_id", "claims", ["policy_id"])
    op.create_index("ix_claims_reference_number", "claims", ["reference_number"], unique=True)
    op.create_index("ix_claims_status", "claims", ["status"])

    op.create_table(
        "claim_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("claim_id", sa.Uuid(), sa.ForeignKey("claims.id", ondelete="CASCADE"), nullable=False),
        sa.Column("item_id", sa.Uuid(), sa.ForeignKey("items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Draft"),
        sa.Column("is_repairable", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("repair_estimate", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("repair_actual", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("replace_estimate", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("replace_actual", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payout_option", sa.String(20), nullable=True),
        sa.Column("payout_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fmv", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("review_date", sa.DateTime(), nullable=True),
        sa.Column("reviewer_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_claim_items_claim_id", "claim_items", ["claim_id"])
    op.create_index("ix_claim_items_item_id", "claim_items", ["item_id"])

    op.create_table(
        "claim_files",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("claim_id", sa.Uuid(), sa.ForeignKey("claims.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "claim_item_id", sa.Uuid(),
            sa.ForeignKey("claim_items.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("purpose", sa.String(20), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("storage_key", sa.String(500), nullable=False),
        sa.Column("uploaded_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_claim_files_claim_id", "claim_files", ["claim_id"])

    # ── Ledger ──
    op.create_table(
        "ledger_reports",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("policies.id", ondelete="CASCADE"), nullable=True),
        sa.Column("type", sa.String(20), nullable=False, server_default="Monthly"),
        sa.Column("report_date", sa.Date(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_ledger_reports_policy_id", "ledger_reports", ["policy_id"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("policies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("item_id", sa.Uuid(), sa.ForeignKey("items.id", ondelete="SET NULL"), nullable=True),
        sa.Column("claim_id", sa.Uuid(), sa.ForeignKey("claims.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "ledger_report_id", sa.Uuid(),
            sa.ForeignKey("ledger_reports.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(200), nullable=False, server_default=""),
        sa.Column("date_submitted", sa.Date(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_ledger_entries_policy_id", "ledger_entries", ["policy_id"])

    # ── Audit and notifications ──
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.String(36), nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("actor", sa.String(100), nullable=False),
        sa.Column("action", sa.String(500), nullable=False),
        sa.Column("resource_type", sa.String(30), nullable=True),
        sa.Column("resource_id", sa.String(50), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("previous_hash", sa.String(64), nullable=True),
        sa.Column("current_hash", sa.String(64), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_audit_log_event_id", "audit_log", ["event_id"], unique=True)
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_resource_id", "audit_log", ["resource_id"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_id", sa.String(36), nullable=False),
        sa.Column("event_kind", sa.String(40), nullable=False),
        sa.Column("recipient_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("resource_type", sa.String(30), nullable=False),
        sa.Column("resource_id", sa.String(50), nullable=False),
        sa.Column("subject", sa.String(200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_notifications_event_id", "notifications", ["event_id"])
    op.create_index("ix_notifications_event_kind", "notifications", ["event_kind"])
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])


def downgrade() -> None:
    for table in (
        "notifications",
        "audit_log",
        "ledger_entries",
        "ledger_reports",
        "claim_files",
        "claim_items",
        "claims",
        "items",
        "item_categories",
        "strikes",
        "policy_dependents",
        "policy_users",
        "policies",
        "users",
    ):
        op.drop_table(table)
