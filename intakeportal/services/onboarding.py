from __future__ import annotations

from dataclasses import dataclass
import logging
from urllib.parse import quote

from intakeportal.core.errors import ConflictError, NotFound, ValidationFailed
from intakeportal.domain.models import (
    Actor,
    Brokerage,
    ClientIdentity,
    IntakeSession,
    OnboardingSource,
    WebhookIdempotency,
    new_id,
    utc_now,
)
from intakeportal.persistence.base import IntakeStore
from intakeportal.services.audit import AuditTrail
from intakeportal.services.auth.portal_auth import PortalAuthService, normalize_email
from intakeportal.services.file_routing import SessionFileRouting
from intakeportal.services.intake import IntakeSessionService
from intakeportal.services.notifications.email import DeliveryStatus, EmailNotifier


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OnboardingResult:
    client_id: str
    session_id: str
    invite_sent: bool
    magic_link_url: str | None = None
    replayed: bool = False


@dataclass(frozen=True)
class InviteResult:
    magic_link_url: str
    delivery_status: DeliveryStatus


def build_magic_link_url(portal_base_url: str, raw_token: str) -> str:
    return f"{portal_base_url.rstrip('/')}/portal/auth/magic?token={quote(raw_token, safe='')}"


class OnboardingService:
    """Client onboarding, invites and self-service magic link requests."""

    def __init__(
        self,
        *,
        store: IntakeStore,
        audit: AuditTrail,
        auth: PortalAuthService,
        intake: IntakeSessionService,
        notifier: EmailNotifier,
        routing: SessionFileRouting,
        default_portal_base_url: str,
    ) -> None:
        self._store = store
        self._audit = audit
        self._auth = auth
        self._intake = intake
        self._notifier = notifier
        self._routing = routing
        self._default_portal_base_url = default_portal_base_url

    async def _brokerage_by_slug(self, slug: str) -> Brokerage:
        brokerage = await self._store.brokerages.find_one(slug=slug)
        if brokerage is None:
            raise NotFound("brokerage", slug)
        return brokerage

    async def _active_session(self, client_id: str) -> IntakeSession | None:
        sessions = await self._store.sessions.find(
            client_id=client_id, order_by="created_at", descending=True, limit=1
        )
        return sessions[0] if sessions else None

    async def _upsert_client(
        self,
        *,
        brokerage_id: str,
        business_name: str,
        contact_name: str,
        email: str,
        phone: str | None,
        assigned_owner: str | None,
    ) -> ClientIdentity:
        existing = await self._store.clients.find_one(brokerage_id=brokerage_id, email=email)
        if existing is not None:
            # Re-onboarding refreshes contact details and restores an archived client.
            updated = await self._store.clients.update(
                existing.id,
                {
                    "business_name": business_name,
                    "contact_name": contact_name,
                    "phone": phone,
                    "assigned_owner": assigned_owner or existing.assigned_owner,
                    "is_archived": False,
                    "archived_at": None,
                },
            )
            if updated is None:
                raise NotFound("client_identity", existing.id)
            return updated
        try:
            return await self._store.clients.create(
                ClientIdentity(
                    id=new_id("client"),
                    brokerage_id=brokerage_id,
                    business_name=business_name,
                    contact_name=contact_name,
                    email=email,
                    phone=phone,
                    assigned_owner=assigned_owner,
                )
            )
        except ConflictError:
            # A concurrent onboarding created the same (tenant, email) pair first.
            raced = await self._store.clients.find_one(brokerage_id=brokerage_id, email=email)
            if raced is None:
                raise
            return raced

    async def create_or_update_client_onboarding(
        self,
        *,
        brokerage_slug: str,
        business_name: str,
        contact_name: str,
        email: str,
        phone: str | None = None,
        assigned_owner: str | None = None,
        trigger_invite: bool = False,
        source: OnboardingSource = OnboardingSource.ADMIN,
        idempotency_key: str | None = None,
    ) -> OnboardingResult:
        normalized_email = normalize_email(email or "")
        field_errors: dict[str, str] = {}
        if not (business_name or "").strip():
            field_errors["business_name"] = "Business name is required"
        if not (contact_name or "").strip():
            field_errors["contact_name"] = "Contact name is required"
        if "@" not in normalized_email:
            field_errors["email"] = "A valid email is required"
        if field_errors:
            raise ValidationFailed(field_errors)

        brokerage = await self._brokerage_by_slug(brokerage_slug)
        use_key = source == OnboardingSource.API and bool(idempotency_key)

        if use_key:
            prior = await self._store.webhook_keys.find_one(
                brokerage_id=brokerage.id, idempotency_key=idempotency_key
            )
            if prior is not None:
                logger.info(
                    "onboarding_replayed brokerage_id=%s idempotency_key=%s session_id=%s",
                    brokerage.id,
                    idempotency_key,
                    prior.session_id,
                )
                return OnboardingResult(
                    client_id=prior.client_id,
                    session_id=prior.session_id,
                    invite_sent=False,
                    replayed=True,
                )

        client = await self._upsert_client(
            brokerage_id=brokerage.id,
            business_name=business_name.strip(),
            contact_name=contact_name.strip(),
            email=normalized_email,
            phone=phone,
            assigned_owner=assigned_owner,
        )
        session = await self._active_session(client.id)
        if session is None:
            session = await self._intake.create_session_rows(client_id=client.id, brokerage_id=brokerage.id)

        await self._audit.record(
            session_id=session.id,
            brokerage_id=brokerage.id,
            client_id=client.id,
            actor=Actor.SYSTEM,
            action="CLIENT_ONBOARDED",
            details={
                "source": OnboardingSource(source).value,
                "business_name": client.business_name,
                "contact_name": client.contact_name,
                "email": client.email,
            },
        )

        if use_key:
            try:
                await self._store.webhook_keys.create(
                    WebhookIdempotency(
                        id=new_id("webhook"),
                        idempotency_key=str(idempotency_key),
                        brokerage_id=brokerage.id,
                        client_id=client.id,
                        session_id=session.id,
                    )
                )
            except ConflictError:
                # A concurrent delivery of the same key recorded it first; both resolve to the same client.
                logger.info(
                    "onboarding_idempotency_race brokerage_id=%s idempotency_key=%s",
                    brokerage.id,
                    idempotency_key,
                )

        if not trigger_invite:
            return OnboardingResult(client_id=client.id, session_id=session.id, invite_sent=False)

        invite = await self.send_invite_for_session(session.id)
        return OnboardingResult(
            client_id=client.id,
            session_id=session.id,
            invite_sent=True,
            magic_link_url=invite.magic_link_url,
        )

    async def send_invite_for_session(self, session_id: str) -> InviteResult:
        session = await self._store.sessions.get(session_id)
        if session is None:
            raise NotFound("intake_session", session_id)
        client = await self._store.clients.get(session.client_id)
        if client is None:
            raise NotFound("client_identity", session.client_id)
        brokerage = await self._store.brokerages.get(session.brokerage_id)
        if brokerage is None:
            raise NotFound("brokerage", session.brokerage_id)

        await self._routing.ensure_folder(brokerage=brokerage, client=client, session=session)

        issued = await self._auth.issue_magic_link(session.id)
        magic_link_url = build_magic_link_url(
            brokerage.portal_base_url or self._default_portal_base_url, issued.raw_token
        )
        delivery = await self._notifier.send_welcome_email(
            brokerage=brokerage,
            client=client,
            session=session,
            magic_link_url=magic_link_url,
        )
        if delivery.status != DeliveryStatus.FAILED:
            await self._audit.record(
                session_id=session.id,
                brokerage_id=brokerage.id,
                client_id=client.id,
                actor=Actor.SYSTEM,
                action="WELCOME_EMAIL_SENT",
                details={"to": client.email, "from": f"{brokerage.sender_name} <{brokerage.sender_email}>"},
            )

        await self._store.sessions.update(session.id, {"invite_sent_at": utc_now()})
        await self._audit.record(
            session_id=session.id,
            brokerage_id=brokerage.id,
            client_id=client.id,
            actor=Actor.SYSTEM,
            action="CLIENT_INVITED",
            details={"magic_link_url": magic_link_url, "delivery_status": delivery.status.value},
        )
        logger.info(
            "client_invited session_id=%s magic_link_id=%s delivery=%s",
            session.id,
            issued.link.id,
            delivery.status.value,
        )
        return InviteResult(magic_link_url=magic_link_url, delivery_status=delivery.status)

    async def request_magic_link(self, *, brokerage_slug: str, email: str) -> bool:
        # The caller always reports acceptance; only known clients in this tenant get an email.
        brokerage = await self._store.brokerages.find_one(slug=brokerage_slug)
        if brokerage is None:
            logger.info("magic_link_request_ignored reason=unknown_brokerage slug=%s", brokerage_slug)
            return False
        client = await self._store.clients.find_one(brokerage_id=brokerage.id, email=normalize_email(email or ""))
        if client is None:
            logger.info("magic_link_request_ignored reason=unknown_client slug=%s", brokerage_slug)
            return False
        session = await self._active_session(client.id)
        if session is None:
            logger.info("magic_link_request_ignored reason=no_session client_id=%s", client.id)
            return False
        await self.send_invite_for_session(session.id)
        return True
