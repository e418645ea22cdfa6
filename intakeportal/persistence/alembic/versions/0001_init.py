"""init intake core

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


_MERGE_STEP_FUNCTION = """
CREATE OR REPLACE FUNCTION merge_intake_step(p_step_id text, p_patch jsonb, p_mark_complete boolean)
RETURNS SETOF intake_steps
LANGUAGE sql
AS $$
    UPDATE intake_steps
       SET data = COALESCE(data, '{}'::jsonb) || p_patch,
           is_complete = is_complete OR p_mark_complete,
           updated_at = now()
     WHERE id = p_step_id
    RETURNING *;
$$;
"""


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "brokerages",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("short_name", sa.String(), nullable=True),
        sa.Column("sender_name", sa.String(), nullable=False),
        sa.Column("sender_email", sa.String(), nullable=False),
        sa.Column("portal_base_url", sa.String(), nullable=False),
        sa.Column("drive_parent_folder_id", sa.String(), nullable=True),
        sa.Column("branding", postgresql.JSONB(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("archived_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_brokerages_slug", "brokerages", ["slug"], unique=True)

    op.create_table(
        "client_identities",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("brokerage_id", sa.String(), nullable=False),
        sa.Column("business_name", sa.String(), nullable=False),
        sa.Column("contact_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("assigned_owner", sa.String(), nullable=True),
        sa.Column("password_salt", sa.String(), nullable=True),
        sa.Column("password_hash", sa.String(), nullable=True),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("archived_at", nullable=True),
        _ts("last_activity_at"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("brokerage_id", "email", name="uq_client_identities_brokerage_email"),
    )
    op.create_index("ix_client_identities_brokerage_id", "client_identities", ["brokerage_id"])

    op.create_table(
        "intake_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("brokerage_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("current_step", sa.Integer(), nullable=False),
        sa.Column("total_steps", sa.Integer(), nullable=False),
        sa.Column("completion_pct", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("missing_items", postgresql.JSONB(), nullable=False),
        _ts("partial_submitted_at", nullable=True),
        _ts("final_submitted_at", nullable=True),
        _ts("invite_sent_at", nullable=True),
        _ts("last_portal_access_at", nullable=True),
        sa.Column("drive_folder_id", sa.String(), nullable=True),
        sa.Column("drive_folder_url", sa.String(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        # current_step stays inside [1, total_steps].
        sa.CheckConstraint("current_step >= 1 AND current_step <= total_steps", name="ck_intake_sessions_step"),
    )
    op.create_index("ix_intake_sessions_client_id", "intake_sessions", ["client_id"])
    op.create_index("ix_intake_sessions_brokerage_id", "intake_sessions", ["brokerage_id"])

    op.create_table(
        "intake_steps",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("session_id", sa.String(), sa.ForeignKey("intake_sessions.id"), nullable=False),
        sa.Column("step_key", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("data", postgresql.JSONB(), nullable=False),
        sa.Column("is_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("updated_at"),
        sa.UniqueConstraint("session_id", "step_key", name="uq_intake_steps_session_step"),
    )
    op.create_index("ix_intake_steps_session_id", "intake_steps", ["session_id"])

    op.create_table(
        "intake_status",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("session_id", sa.String(), sa.ForeignKey("intake_sessions.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("note", sa.Text(), nullable=False, server_default=""),
        _ts("created_at"),
    )
    op.create_index("ix_intake_status_session_id", "intake_status", ["session_id"])

    op.create_table(
        "intake_assets",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("session_id", sa.String(), sa.ForeignKey("intake_sessions.id"), nullable=False),
        sa.Column("brokerage_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("mime_type", sa.String(), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.Column("drive_file_id", sa.String(), nullable=True),
        sa.Column("drive_file_url", sa.String(), nullable=True),
        _ts("uploaded_at"),
    )
    op.create_index(
        "ix_intake_assets_session_category_file",
        "intake_assets",
        ["session_id", "category", "file_name"],
    )

    op.create_table(
        "magic_links",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("token_hash", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("brokerage_id", sa.String(), nullable=False),
        _ts("expires_at"),
        _ts("used_at", nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_magic_links_token_hash", "magic_links", ["token_hash"], unique=True)
    op.create_index("ix_magic_links_session_id", "magic_links", ["session_id"])

    op.create_table(
        "portal_auth_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("brokerage_id", sa.String(), nullable=False),
        _ts("expires_at"),
        _ts("revoked_at", nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_portal_auth_sessions_session_id", "portal_auth_sessions", ["session_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("brokerage_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("actor", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_audit_log_session_id", "audit_log", ["session_id"])
    op.create_index("ix_audit_log_brokerage_id", "audit_log", ["brokerage_id"])

    op.create_table(
        "webhook_idempotency",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("brokerage_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint("brokerage_id", "idempotency_key", name="uq_webhook_idempotency_key"),
    )

    op.create_table(
        "outbound_emails",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("brokerage_id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("recipient", sa.String(), nullable=False),
        sa.Column("from_name", sa.String(), nullable=False),
        sa.Column("from_email", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("html_body", sa.Text(), nullable=False),
        sa.Column("provider_message_id", sa.String(), nullable=True),
        sa.Column("provider_status", sa.String(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_outbound_emails_session_id", "outbound_emails", ["session_id"])
    op.create_index("ix_outbound_emails_brokerage_id", "outbound_emails", ["brokerage_id"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        _ts("created_at"),
        _ts("started_at", nullable=True),
        _ts("completed_at", nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
    )
    op.create_index("ix_jobs_session_id", "jobs", ["session_id"])

    op.create_table(
        "reports",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("findings", postgresql.JSONB(), nullable=False),
        sa.Column("recommendations", postgresql.JSONB(), nullable=False),
        _ts("approved_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_reports_session_id", "reports", ["session_id"])

    # Atomic shallow merge used by the REST store (rpc/merge_intake_step).
    op.execute(_MERGE_STEP_FUNCTION)


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS merge_intake_step(text, jsonb, boolean)")
    for table in (
        "reports",
        "jobs",
        "outbound_emails",
        "webhook_idempotency",
        "audit_log",
        "portal_auth_sessions",
        "magic_links",
        "intake_assets",
        "intake_status",
        "intake_steps",
        "intake_sessions",
        "client_identities",
        "brokerages",
    ):
        op.drop_table(table)
