from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable

from intakeportal.core.config import Settings
from intakeportal.core.errors import (
    AuthError,
    AuthRequired,
    CrossTenantDenied,
    InvalidCredentials,
    InvalidSignature,
    InvalidToken,
    NotFound,
    ScopeInvalid,
    SessionExpired,
    TokenAlreadyUsed,
    TokenExpired,
    ValidationFailed,
)
from intakeportal.domain.models import (
    Actor,
    AuthSource,
    IntakeSession,
    MagicLinkToken,
    PortalAuthSession,
    new_id,
    utc_now,
)
from intakeportal.persistence.base import IntakeStore
from intakeportal.services.audit import AuditTrail
from intakeportal.services.auth.passwords import (
    create_password_salt,
    hash_password,
    validate_password_strength,
    verify_password,
)
from intakeportal.services.auth.tokens import TokenCodec


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PortalScope:
    # The resolved (tenant, client, session) triple every intake operation acts on.
    brokerage_id: str
    client_id: str
    session_id: str
    auth_session_id: str


@dataclass(frozen=True)
class EstablishedSession:
    cookie_value: str
    requires_password_setup: bool
    brokerage_slug: str
    session_id: str
    expires_at: datetime


@dataclass(frozen=True)
class IssuedMagicLink:
    raw_token: str
    link: MagicLinkToken
    brokerage_slug: str


def normalize_email(value: str) -> str:
    return value.strip().lower()


class PortalAuthService:
    """Tenant-scoped client authentication: magic links, passwords and signed portal cookies."""

    def __init__(
        self,
        *,
        store: IntakeStore,
        codec: TokenCodec,
        audit: AuditTrail,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._codec = codec
        self._audit = audit
        self._settings = settings
        self._clock = clock

    def _deny(self, error: type[AuthError], reason: str, **context: object) -> AuthError:
        # Full detail stays in the logs; callers only ever surface "unauthorized".
        detail = " ".join(f"{key}={value}" for key, value in context.items())
        logger.warning("portal_auth_denied error=%s reason=%s %s", error.__name__, reason, detail)
        return error(reason)

    async def resolve_portal_auth(self, brokerage_slug: str, signed_cookie_value: str | None) -> PortalScope:
        if not signed_cookie_value:
            raise self._deny(AuthRequired, "missing portal cookie", slug=brokerage_slug)

        auth_session_id = self._codec.verify(signed_cookie_value)
        if auth_session_id is None:
            raise self._deny(InvalidSignature, "cookie signature mismatch", slug=brokerage_slug)

        auth_session = await self._store.auth_sessions.get(auth_session_id)
        now = self._clock()
        if auth_session is None or auth_session.revoked_at is not None or auth_session.expires_at <= now:
            raise self._deny(
                SessionExpired,
                "auth session unknown, revoked or expired",
                slug=brokerage_slug,
                auth_session_id=auth_session_id,
            )

        brokerage = await self._store.brokerages.find_one(slug=brokerage_slug)
        if brokerage is None or brokerage.id != auth_session.brokerage_id:
            raise self._deny(
                CrossTenantDenied,
                "auth session belongs to another tenant",
                slug=brokerage_slug,
                auth_session_id=auth_session_id,
            )

        session = await self._store.sessions.get(auth_session.session_id)
        if (
            session is None
            or session.brokerage_id != brokerage.id
            or session.client_id != auth_session.client_id
        ):
            raise self._deny(
                ScopeInvalid,
                "intake session does not match auth scope",
                slug=brokerage_slug,
                auth_session_id=auth_session_id,
                session_id=auth_session.session_id,
            )

        await self._store.sessions.update(session.id, {"last_portal_access_at": now})
        await self._store.clients.update(auth_session.client_id, {"last_activity_at": now})
        return PortalScope(
            brokerage_id=brokerage.id,
            client_id=auth_session.client_id,
            session_id=session.id,
            auth_session_id=auth_session_id,
        )

    async def establish_session(
        self,
        *,
        session_id: str,
        client_id: str,
        brokerage_id: str,
        source: AuthSource,
    ) -> EstablishedSession:
        client = await self._store.clients.get(client_id)
        if client is None:
            raise NotFound("client_identity", client_id)
        brokerage = await self._store.brokerages.get(brokerage_id)
        if brokerage is None:
            raise NotFound("brokerage", brokerage_id)

        expires_at = self._clock() + timedelta(hours=self._settings.portal_session_ttl_hours)
        auth_session = await self._store.auth_sessions.create(
            PortalAuthSession(
                id=new_id("pas"),
                session_id=session_id,
                client_id=client_id,
                brokerage_id=brokerage_id,
                expires_at=expires_at,
            )
        )
        await self._audit.record(
            session_id=session_id,
            brokerage_id=brokerage_id,
            client_id=client_id,
            actor=Actor.CLIENT,
            action="PORTAL_AUTHENTICATED",
            details={"source": source.value, "auth_session_id": auth_session.id},
        )
        return EstablishedSession(
            cookie_value=self._codec.sign_session_id(auth_session.id),
            requires_password_setup=not client.has_password,
            brokerage_slug=brokerage.slug,
            session_id=session_id,
            expires_at=expires_at,
        )

    async def issue_magic_link(self, session_id: str) -> IssuedMagicLink:
        session = await self._store.sessions.get(session_id)
        if session is None:
            raise NotFound("intake_session", session_id)
        brokerage = await self._store.brokerages.get(session.brokerage_id)
        if brokerage is None:
            raise NotFound("brokerage", session.brokerage_id)

        raw_token = self._codec.issue_opaque_token()
        link = await self._store.magic_links.create(
            MagicLinkToken(
                id=new_id("mlt"),
                token_hash=self._codec.hash_for_storage(raw_token),
                session_id=session.id,
                client_id=session.client_id,
                brokerage_id=session.brokerage_id,
                expires_at=self._clock() + timedelta(minutes=self._settings.magic_link_ttl_minutes),
            )
        )
        return IssuedMagicLink(raw_token=raw_token, link=link, brokerage_slug=brokerage.slug)

    async def consume_magic_link(self, raw_token: str) -> MagicLinkToken:
        token_hash = self._codec.hash_for_storage(raw_token or "")
        link = await self._store.magic_links.find_one(token_hash=token_hash)
        if link is None:
            raise self._deny(InvalidToken, "magic link not found")
        if link.used_at is not None:
            raise self._deny(TokenAlreadyUsed, "magic link already redeemed", magic_link_id=link.id)
        now = self._clock()
        if link.expires_at <= now:
            raise self._deny(TokenExpired, "magic link expired", magic_link_id=link.id)

        # Only the first concurrent redemption wins the compare-and-set.
        consumed = await self._store.magic_links.update(link.id, {"used_at": now}, expect={"used_at": None})
        if consumed is None:
            raise self._deny(TokenAlreadyUsed, "magic link redeemed concurrently", magic_link_id=link.id)
        return consumed

    async def consume_magic_link_and_authenticate(self, raw_token: str) -> EstablishedSession:
        link = await self.consume_magic_link(raw_token)
        await self._audit.record(
            session_id=link.session_id,
            brokerage_id=link.brokerage_id,
            client_id=link.client_id,
            actor=Actor.CLIENT,
            action="MAGIC_LINK_CONSUMED",
            details={"magic_link_id": link.id},
        )
        return await self.establish_session(
            session_id=link.session_id,
            client_id=link.client_id,
            brokerage_id=link.brokerage_id,
            source=AuthSource.MAGIC_LINK,
        )

    async def _active_session_for_client(self, client_id: str) -> IntakeSession | None:
        sessions = await self._store.sessions.find(
            client_id=client_id,
            order_by="created_at",
            descending=True,
            limit=1,
        )
        return sessions[0] if sessions else None

    async def authenticate_with_password(
        self,
        *,
        brokerage_slug: str,
        email: str,
        password: str,
    ) -> EstablishedSession:
        brokerage = await self._store.brokerages.find_one(slug=brokerage_slug)
        client = None
        if brokerage is not None:
            client = await self._store.clients.find_one(brokerage_id=brokerage.id, email=normalize_email(email))

        # verify_password runs scrypt even without a credential to keep timing uniform.
        valid = verify_password(
            password,
            client.password_salt if client else None,
            client.password_hash if client else None,
        )
        if brokerage is None or client is None or not valid:
            raise self._deny(InvalidCredentials, "email or password rejected", slug=brokerage_slug)

        session = await self._active_session_for_client(client.id)
        if session is None:
            raise self._deny(InvalidCredentials, "client has no intake session", slug=brokerage_slug, client_id=client.id)

        await self._audit.record(
            session_id=session.id,
            brokerage_id=brokerage.id,
            client_id=client.id,
            actor=Actor.CLIENT,
            action="PASSWORD_SIGN_IN",
        )
        return await self.establish_session(
            session_id=session.id,
            client_id=client.id,
            brokerage_id=brokerage.id,
            source=AuthSource.PASSWORD,
        )

    async def set_password(
        self,
        *,
        brokerage_slug: str,
        signed_cookie_value: str | None,
        password: str,
    ) -> PortalScope:
        scope = await self.resolve_portal_auth(brokerage_slug, signed_cookie_value)
        problem = validate_password_strength(password, min_length=self._settings.password_min_length)
        if problem is not None:
            raise ValidationFailed({"password": problem})

        salt = create_password_salt()
        await self._store.clients.update(
            scope.client_id,
            {"password_salt": salt, "password_hash": hash_password(password, salt)},
        )
        await self._audit.record(
            session_id=scope.session_id,
            brokerage_id=scope.brokerage_id,
            client_id=scope.client_id,
            actor=Actor.CLIENT,
            action="PASSWORD_SET",
        )
        return scope

    async def sign_out(self, signed_cookie_value: str | None) -> bool:
        # Revoke the server-side record; a missing or forged cookie is simply a no-op.
        auth_session_id = self._codec.verify(signed_cookie_value)
        if auth_session_id is None:
            return False
        revoked = await self._store.auth_sessions.update(
            auth_session_id,
            {"revoked_at": self._clock()},
            expect={"revoked_at": None},
        )
        if revoked is None:
            return False
        await self._audit.record(
            session_id=revoked.session_id,
            brokerage_id=revoked.brokerage_id,
            client_id=revoked.client_id,
            actor=Actor.CLIENT,
            action="PORTAL_SIGNED_OUT",
            details={"auth_session_id": revoked.id},
        )
        return True
