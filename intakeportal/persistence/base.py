from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Generic, Mapping, Protocol, TypeVar

from intakeportal.domain.models import (
    AuditLog,
    Brokerage,
    ClientIdentity,
    IntakeAsset,
    IntakeSession,
    IntakeStatusRecord,
    IntakeStep,
    Job,
    MagicLinkToken,
    OutboundEmail,
    PortalAuthSession,
    Record,
    Report,
    WebhookIdempotency,
    utc_now,
)


T = TypeVar("T", bound=Record)


class Repository(Protocol, Generic[T]):
    """Per-entity storage contract shared by every backing store.

    Records go in and come out as independent copies; mutating a returned
    record never changes stored state until it is written back through update.
    """

    model: type[T]

    async def get(self, record_id: str) -> T | None: ...

    async def create(self, record: T) -> T: ...

    async def update(
        self,
        record_id: str,
        changes: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> T | None: ...

    async def find(
        self,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        **filters: Any,
    ) -> list[T]: ...

    async def find_one(self, **filters: Any) -> T | None: ...

    async def count(self, **filters: Any) -> int: ...


# (table name, model, unique column sets) per entity; shared by every backend.
ENTITY_TABLES: dict[str, tuple[str, type[Record], tuple[tuple[str, ...], ...]]] = {
    "brokerages": ("brokerages", Brokerage, (("slug",),)),
    "clients": ("client_identities", ClientIdentity, (("brokerage_id", "email"),)),
    "sessions": ("intake_sessions", IntakeSession, ()),
    "steps": ("intake_steps", IntakeStep, (("session_id", "step_key"),)),
    "status_history": ("intake_status", IntakeStatusRecord, ()),
    "assets": ("intake_assets", IntakeAsset, ()),
    "magic_links": ("magic_links", MagicLinkToken, (("token_hash",),)),
    "auth_sessions": ("portal_auth_sessions", PortalAuthSession, ()),
    "audit_logs": ("audit_log", AuditLog, ()),
    "webhook_keys": ("webhook_idempotency", WebhookIdempotency, (("brokerage_id", "idempotency_key"),)),
    "emails": ("outbound_emails", OutboundEmail, ()),
    "jobs": ("jobs", Job, ()),
    "reports": ("reports", Report, ()),
}


def plain_value(value: Any) -> Any:
    # Filters compare on raw values so enum members and their strings match alike.
    if isinstance(value, Enum):
        return value.value
    return value


def stamp_changes(model: type[Record], changes: Mapping[str, Any]) -> dict[str, Any]:
    # Every write refreshes updated_at unless the caller set it explicitly.
    resolved = dict(changes)
    if "updated_at" in model.model_fields and "updated_at" not in resolved:
        resolved["updated_at"] = utc_now()
    return resolved


class IntakeStore(ABC):
    """Bundle of repositories plus the one multi-field atomic operation the core needs."""

    brokerages: Repository[Brokerage]
    clients: Repository[ClientIdentity]
    sessions: Repository[IntakeSession]
    steps: Repository[IntakeStep]
    status_history: Repository[IntakeStatusRecord]
    assets: Repository[IntakeAsset]
    magic_links: Repository[MagicLinkToken]
    auth_sessions: Repository[PortalAuthSession]
    audit_logs: Repository[AuditLog]
    webhook_keys: Repository[WebhookIdempotency]
    emails: Repository[OutboundEmail]
    jobs: Repository[Job]
    reports: Repository[Report]

    @abstractmethod
    async def merge_step_data(
        self,
        step_id: str,
        patch: Mapping[str, Any],
        mark_complete: bool,
    ) -> IntakeStep:
        """Shallow-merge patch into the step's answers; completion is sticky."""

    async def initialize(self) -> None:
        # Backends that need schema or connection setup override this.
        return None

    async def close(self) -> None:
        return None
