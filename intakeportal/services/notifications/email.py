from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from html import escape
import logging
from typing import Protocol

import httpx

from intakeportal.core.config import Settings
from intakeportal.core.errors import PersistenceError
from intakeportal.domain.models import Brokerage, ClientIdentity, IntakeSession, OutboundEmail, new_id
from intakeportal.persistence.base import IntakeStore


logger = logging.getLogger(__name__)


class DeliveryStatus(str, Enum):
    RECORDED = "recorded"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class EmailDeliveryResult:
    # Summarize one delivery attempt for callers and the audit trail.
    status: DeliveryStatus
    email_id: str | None
    provider_status: str | None = None


class EmailNotifier(Protocol):
    async def send_welcome_email(
        self,
        *,
        brokerage: Brokerage,
        client: ClientIdentity,
        session: IntakeSession,
        magic_link_url: str,
    ) -> EmailDeliveryResult: ...


def render_welcome_email(
    *,
    brokerage: Brokerage,
    client: ClientIdentity,
    magic_link_url: str,
) -> tuple[str, str]:
    # Render the branded subject and HTML body; every interpolated value is escaped.
    subject = f"{brokerage.name} secure intake portal access"
    html = (
        '<div style="font-family:Arial,sans-serif;line-height:1.5;color:#1b1b1b;">'
        f'<h2 style="margin-bottom:8px;">Welcome to {escape(brokerage.name)}</h2>'
        f"<p>Hi {escape(client.contact_name)}, your secure intake portal is ready.</p>"
        "<p>This intake is designed for multiple sessions. You can save progress and return at any time.</p>"
        f'<p><a href="{escape(magic_link_url, quote=True)}" '
        "style=\"display:inline-block;padding:10px 16px;border-radius:8px;"
        f'background:{escape(brokerage.branding.primary_color)};color:#fff;text-decoration:none;">'
        "Open Secure Portal</a></p>"
        "<p>On first access, you can set a password. You can always request a new magic link later.</p>"
        f'<p style="font-size:12px;color:#555;">{escape(brokerage.branding.legal_footer)}</p>'
        f'<p style="font-size:12px;color:#777;">Sent by {escape(brokerage.sender_name)}.</p>'
        "</div>"
    )
    return subject, html


class OutboxEmailNotifier:
    """Records every welcome email in the outbox and optionally posts it to a provider API."""

    def __init__(
        self,
        *,
        store: IntakeStore,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._transport = transport

    async def _post_to_provider(self, email: OutboundEmail) -> tuple[str | None, str]:
        timeout = self._settings.email_timeout_ms / 1000.0
        headers = {"Content-Type": "application/json"}
        if self._settings.email_api_key:
            headers["Authorization"] = f"Bearer {self._settings.email_api_key}"
        payload = {
            "from": f"{email.from_name} <{email.from_email}>",
            "to": [email.recipient],
            "subject": email.subject,
            "html": email.html_body,
        }
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            response = await client.post(str(self._settings.email_api_url), json=payload, headers=headers)
        if response.status_code >= 400:
            return None, f"http_{response.status_code}"
        message_id: str | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("id"), str):
            message_id = body["id"]
        return message_id, "accepted"

    async def send_welcome_email(
        self,
        *,
        brokerage: Brokerage,
        client: ClientIdentity,
        session: IntakeSession,
        magic_link_url: str,
    ) -> EmailDeliveryResult:
        subject, html = render_welcome_email(brokerage=brokerage, client=client, magic_link_url=magic_link_url)
        try:
            email = await self._store.emails.create(
                OutboundEmail(
                    id=new_id("email"),
                    brokerage_id=brokerage.id,
                    session_id=session.id,
                    recipient=client.email,
                    from_name=brokerage.sender_name,
                    from_email=brokerage.sender_email,
                    subject=subject,
                    html_body=html,
                )
            )
        except PersistenceError as exc:
            logger.warning("welcome_email_outbox_failed session_id=%s", session.id, exc_info=exc)
            return EmailDeliveryResult(status=DeliveryStatus.FAILED, email_id=None)

        if self._settings.email_provider != "http" or not self._settings.email_api_url:
            return EmailDeliveryResult(status=DeliveryStatus.RECORDED, email_id=email.id)

        try:
            message_id, provider_status = await self._post_to_provider(email)
        except httpx.HTTPError as exc:
            logger.warning("welcome_email_send_failed session_id=%s email_id=%s", session.id, email.id, exc_info=exc)
            message_id, provider_status = None, "error"

        await self._store.emails.update(
            email.id,
            {"provider_message_id": message_id, "provider_status": provider_status},
        )
        if provider_status != "accepted":
            logger.warning(
                "welcome_email_rejected session_id=%s email_id=%s provider_status=%s",
                session.id,
                email.id,
                provider_status,
            )
            return EmailDeliveryResult(status=DeliveryStatus.FAILED, email_id=email.id, provider_status=provider_status)
        return EmailDeliveryResult(status=DeliveryStatus.SENT, email_id=email.id, provider_status=provider_status)
