from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres (so the merge function can use ||), plain JSON elsewhere.
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class BrokerageRow(Base):
    __tablename__ = "brokerages"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Slug is the public routing key; unique and never rewritten.
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String)
    short_name: Mapped[str | None] = mapped_column(String, nullable=True)
    sender_name: Mapped[str] = mapped_column(String)
    sender_email: Mapped[str] = mapped_column(String)
    portal_base_url: Mapped[str] = mapped_column(String)
    drive_parent_folder_id: Mapped[str | None] = mapped_column(String, nullable=True)
    branding: Mapped[dict[str, Any]] = mapped_column(JsonColumn)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ClientIdentityRow(Base):
    __tablename__ = "client_identities"
    __table_args__ = (
        UniqueConstraint("brokerage_id", "email", name="uq_client_identities_brokerage_email"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    brokerage_id: Mapped[str] = mapped_column(String, index=True)
    business_name: Mapped[str] = mapped_column(String)
    contact_name: Mapped[str] = mapped_column(String)
    email: Mapped[str] = mapped_column(String)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    assigned_owner: Mapped[str | None] = mapped_column(String, nullable=True)
    password_salt: Mapped[str | None] = mapped_column(String, nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class IntakeSessionRow(Base):
    __tablename__ = "intake_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    client_id: Mapped[str] = mapped_column(String, index=True)
    brokerage_id: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String)
    current_step: Mapped[int] = mapped_column(Integer)
    total_steps: Mapped[int] = mapped_column(Integer)
    completion_pct: Mapped[int] = mapped_column(Integer, default=0)
    missing_items: Mapped[list[str]] = mapped_column(JsonColumn)
    partial_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    final_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    invite_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_portal_access_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    drive_folder_id: Mapped[str | None] = mapped_column(String, nullable=True)
    drive_folder_url: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class IntakeStepRow(Base):
    __tablename__ = "intake_steps"
    __table_args__ = (
        UniqueConstraint("session_id", "step_key", name="uq_intake_steps_session_step"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    step_key: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String)
    step_order: Mapped[int] = mapped_column(Integer)
    data: Mapped[dict[str, Any]] = mapped_column(JsonColumn)
    is_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class IntakeStatusRow(Base):
    __tablename__ = "intake_status"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String)
    note: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class IntakeAssetRow(Base):
    __tablename__ = "intake_assets"
    __table_args__ = (
        Index("ix_intake_assets_session_category_file", "session_id", "category", "file_name"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String)
    brokerage_id: Mapped[str] = mapped_column(String)
    client_id: Mapped[str] = mapped_column(String)
    category: Mapped[str] = mapped_column(String)
    file_name: Mapped[str] = mapped_column(String)
    mime_type: Mapped[str] = mapped_column(String)
    size_bytes: Mapped[int] = mapped_column(Integer)
    revision: Mapped[int] = mapped_column(Integer)
    drive_file_id: Mapped[str | None] = mapped_column(String, nullable=True)
    drive_file_url: Mapped[str | None] = mapped_column(String, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class MagicLinkRow(Base):
    __tablename__ = "magic_links"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Keyed hash only; the raw token never reaches storage.
    token_hash: Mapped[str] = mapped_column(String, unique=True, index=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    client_id: Mapped[str] = mapped_column(String)
    brokerage_id: Mapped[str] = mapped_column(String)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class PortalAuthSessionRow(Base):
    __tablename__ = "portal_auth_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    client_id: Mapped[str] = mapped_column(String)
    brokerage_id: Mapped[str] = mapped_column(String)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AuditLogRow(Base):
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    brokerage_id: Mapped[str] = mapped_column(String, index=True)
    client_id: Mapped[str] = mapped_column(String)
    actor: Mapped[str] = mapped_column(String)
    action: Mapped[str] = mapped_column(String)
    details: Mapped[dict[str, Any]] = mapped_column(JsonColumn)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class WebhookIdempotencyRow(Base):
    __tablename__ = "webhook_idempotency"
    __table_args__ = (
        UniqueConstraint("brokerage_id", "idempotency_key", name="uq_webhook_idempotency_key"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    idempotency_key: Mapped[str] = mapped_column(String)
    brokerage_id: Mapped[str] = mapped_column(String)
    client_id: Mapped[str] = mapped_column(String)
    session_id: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class OutboundEmailRow(Base):
    __tablename__ = "outbound_emails"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    brokerage_id: Mapped[str] = mapped_column(String, index=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    recipient: Mapped[str] = mapped_column(String)
    from_name: Mapped[str] = mapped_column(String)
    from_email: Mapped[str] = mapped_column(String)
    subject: Mapped[str] = mapped_column(String)
    html_body: Mapped[str] = mapped_column(Text)
    provider_message_id: Mapped[str | None] = mapped_column(String, nullable=True)
    provider_status: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class JobRow(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    kind: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)


class ReportRow(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    title: Mapped[str] = mapped_column(String)
    summary: Mapped[str] = mapped_column(Text)
    findings: Mapped[list[str]] = mapped_column(JsonColumn)
    recommendations: Mapped[list[str]] = mapped_column(JsonColumn)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


# Table name -> ORM class, keyed the same way as the repository registry.
ROW_CLASSES: dict[str, type[Base]] = {
    mapper.class_.__tablename__: mapper.class_ for mapper in Base.registry.mappers
}
