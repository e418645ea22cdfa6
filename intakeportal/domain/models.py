from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Union
from uuid import uuid4

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr


def utc_now() -> datetime:
    # Keep every persisted timestamp in UTC for consistent TTL comparisons.
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    # Prefix ids with the entity kind so they are traceable in logs and audit rows.
    return f"{prefix}_{uuid4().hex}"


def _ensure_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back; treat naive values as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]

# A single answer inside a step's answer map; None clears a previously saved value.
AnswerValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr, list[StrictStr], None]
Answers = dict[str, AnswerValue]


class LifecycleState(str, Enum):
    INVITED = "INVITED"
    IN_PROGRESS = "IN_PROGRESS"
    PARTIAL_SUBMITTED = "PARTIAL_SUBMITTED"
    MISSING_ITEMS_REQUESTED = "MISSING_ITEMS_REQUESTED"
    FINAL_SUBMITTED = "FINAL_SUBMITTED"
    KLOR_SYNTHESIS = "KLOR_SYNTHESIS"
    COUNCIL_RUNNING = "COUNCIL_RUNNING"
    REPORT_READY = "REPORT_READY"
    APPROVED = "APPROVED"


class Actor(str, Enum):
    SYSTEM = "SYSTEM"
    OPERATOR = "OPERATOR"
    CLIENT = "CLIENT"


class AssetCategory(str, Enum):
    FINANCIALS = "FINANCIALS"
    LEGAL = "LEGAL"
    PROPERTY = "PROPERTY"
    OTHER = "OTHER"


class AuthSource(str, Enum):
    MAGIC_LINK = "MAGIC_LINK"
    PASSWORD = "PASSWORD"


class OnboardingSource(str, Enum):
    ADMIN = "ADMIN"
    API = "API"


class JobKind(str, Enum):
    KLOR_RUN = "KLOR_RUN"
    COUNCIL_RUN = "COUNCIL_RUN"


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PortalTone(str, Enum):
    CORPORATE = "corporate"
    PREMIUM_ADVISORY = "premium_advisory"


class Record(BaseModel):
    # Records are plain data; backends copy them in and out without sharing instances.
    model_config = ConfigDict(use_enum_values=False, validate_assignment=False)

    id: str


class BrokerageBranding(BaseModel):
    logo_url: str | None = None
    primary_color: str = "#113968"
    secondary_color: str = "#d4932e"
    legal_footer: str = ""
    show_platform_branding: bool = True
    portal_tone: PortalTone = PortalTone.CORPORATE


class Brokerage(Record):
    slug: str
    name: str
    short_name: str | None = None
    sender_name: str
    sender_email: str
    portal_base_url: str
    drive_parent_folder_id: str | None = None
    branding: BrokerageBranding = Field(default_factory=BrokerageBranding)
    is_archived: bool = False
    archived_at: UtcDatetime | None = None
    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime = Field(default_factory=utc_now)


class ClientIdentity(Record):
    brokerage_id: str
    business_name: str
    contact_name: str
    # Unique per (brokerage_id, email); always stored lower-cased.
    email: str
    phone: str | None = None
    assigned_owner: str | None = None
    password_salt: str | None = None
    password_hash: str | None = None
    is_archived: bool = False
    archived_at: UtcDatetime | None = None
    last_activity_at: UtcDatetime = Field(default_factory=utc_now)
    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime = Field(default_factory=utc_now)

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash and self.password_salt)


class IntakeSession(Record):
    client_id: str
    brokerage_id: str
    status: LifecycleState = LifecycleState.INVITED
    current_step: int = 1
    total_steps: int
    # Derived from step completion; never authoritative.
    completion_pct: int = 0
    missing_items: list[str] = Field(default_factory=list)
    partial_submitted_at: UtcDatetime | None = None
    final_submitted_at: UtcDatetime | None = None
    invite_sent_at: UtcDatetime | None = None
    last_portal_access_at: UtcDatetime | None = None
    drive_folder_id: str | None = None
    drive_folder_url: str | None = None
    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime = Field(default_factory=utc_now)


class IntakeStep(Record):
    session_id: str
    step_key: str
    title: str
    step_order: int
    data: dict[str, Any] = Field(default_factory=dict)
    is_complete: bool = False
    updated_at: UtcDatetime = Field(default_factory=utc_now)


class IntakeStatusRecord(Record):
    session_id: str
    status: LifecycleState
    note: str = ""
    created_at: UtcDatetime = Field(default_factory=utc_now)


class IntakeAsset(Record):
    session_id: str
    brokerage_id: str
    client_id: str
    category: AssetCategory
    file_name: str
    mime_type: str
    size_bytes: int
    revision: int = 1
    drive_file_id: str | None = None
    drive_file_url: str | None = None
    uploaded_at: UtcDatetime = Field(default_factory=utc_now)


class MagicLinkToken(Record):
    # Only the keyed hash of the raw token is ever stored.
    token_hash: str
    session_id: str
    client_id: str
    brokerage_id: str
    expires_at: UtcDatetime
    used_at: UtcDatetime | None = None
    created_at: UtcDatetime = Field(default_factory=utc_now)


class PortalAuthSession(Record):
    session_id: str
    client_id: str
    brokerage_id: str
    expires_at: UtcDatetime
    revoked_at: UtcDatetime | None = None
    created_at: UtcDatetime = Field(default_factory=utc_now)


class AuditLog(Record):
    session_id: str
    brokerage_id: str
    client_id: str
    actor: Actor
    action: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime = Field(default_factory=utc_now)


class WebhookIdempotency(Record):
    # Unique per (brokerage_id, idempotency_key).
    idempotency_key: str
    brokerage_id: str
    client_id: str
    session_id: str
    created_at: UtcDatetime = Field(default_factory=utc_now)


class OutboundEmail(Record):
    brokerage_id: str
    session_id: str
    recipient: str
    from_name: str
    from_email: str
    subject: str
    html_body: str
    provider_message_id: str | None = None
    provider_status: str | None = None
    created_at: UtcDatetime = Field(default_factory=utc_now)


class Job(Record):
    session_id: str
    kind: JobKind
    status: JobStatus = JobStatus.QUEUED
    created_at: UtcDatetime = Field(default_factory=utc_now)
    started_at: UtcDatetime | None = None
    completed_at: UtcDatetime | None = None
    error: str | None = None


class Report(Record):
    session_id: str
    title: str
    summary: str
    findings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    approved_at: UtcDatetime | None = None
    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime = Field(default_factory=utc_now)
