from __future__ import annotations

from datetime import timedelta

import pytest

from intakeportal.core.errors import (
    AuthRequired,
    CrossTenantDenied,
    InvalidCredentials,
    InvalidSignature,
    InvalidToken,
    ScopeInvalid,
    SessionExpired,
    TokenAlreadyUsed,
    TokenExpired,
    ValidationFailed,
)
from intakeportal.domain.models import utc_now
from intakeportal.services.auth.portal_auth import PortalAuthService
from intakeportal.services.container import ServiceContainer
from intakeportal.tests.utils.factories import onboard, portal_cookie, seed_brokerage


async def _actions(container: ServiceContainer, session_id: str) -> list[str]:
    return [entry.action for entry in await container.audit.timeline(session_id)]


@pytest.mark.asyncio
async def test_magic_link_sign_in_establishes_a_scoped_session(container: ServiceContainer) -> None:
    brokerage = await seed_brokerage(container)
    result = await onboard(container)

    issued = await container.portal_auth.issue_magic_link(result.session_id)
    established = await container.portal_auth.consume_magic_link_and_authenticate(issued.raw_token)

    assert established.brokerage_slug == "harbor"
    assert established.requires_password_setup is True
    scope = await container.portal_auth.resolve_portal_auth("harbor", established.cookie_value)
    assert scope.brokerage_id == brokerage.id
    assert scope.client_id == result.client_id
    assert scope.session_id == result.session_id
    session = await container.store.sessions.get(result.session_id)
    assert session.last_portal_access_at is not None

    actions = await _actions(container, result.session_id)
    assert "MAGIC_LINK_CONSUMED" in actions
    assert "PORTAL_AUTHENTICATED" in actions


@pytest.mark.asyncio
async def test_raw_magic_tokens_are_never_stored(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    result = await onboard(container)
    issued = await container.portal_auth.issue_magic_link(result.session_id)
    stored = await container.store.magic_links.get(issued.link.id)
    assert stored.token_hash != issued.raw_token
    assert stored.token_hash == container.codec.hash_for_storage(issued.raw_token)


@pytest.mark.asyncio
async def test_magic_link_is_single_use(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    result = await onboard(container)
    issued = await container.portal_auth.issue_magic_link(result.session_id)
    await container.portal_auth.consume_magic_link(issued.raw_token)
    with pytest.raises(TokenAlreadyUsed):
        await container.portal_auth.consume_magic_link(issued.raw_token)


@pytest.mark.asyncio
async def test_unknown_and_expired_magic_links(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    result = await onboard(container)
    with pytest.raises(InvalidToken):
        await container.portal_auth.consume_magic_link("not-a-real-token")

    issued = await container.portal_auth.issue_magic_link(result.session_id)
    await container.store.magic_links.update(issued.link.id, {"expires_at": utc_now() - timedelta(seconds=1)})
    with pytest.raises(TokenExpired):
        await container.portal_auth.consume_magic_link(issued.raw_token)


@pytest.mark.asyncio
async def test_resolve_denials_in_order(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    await seed_brokerage(container, slug="other")
    result = await onboard(container)
    cookie = await portal_cookie(container, result.session_id)
    auth = container.portal_auth

    with pytest.raises(AuthRequired):
        await auth.resolve_portal_auth("harbor", None)
    with pytest.raises(InvalidSignature):
        await auth.resolve_portal_auth("harbor", cookie + "x")
    with pytest.raises(CrossTenantDenied):
        await auth.resolve_portal_auth("other", cookie)
    with pytest.raises(CrossTenantDenied):
        await auth.resolve_portal_auth("no-such-brokerage", cookie)
    with pytest.raises(SessionExpired):
        await auth.resolve_portal_auth("harbor", container.codec.sign_session_id("pas_unknown"))


@pytest.mark.asyncio
async def test_expired_auth_session_is_rejected_lazily(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    result = await onboard(container)
    cookie = await portal_cookie(container, result.session_id)
    later = PortalAuthService(
        store=container.store,
        codec=container.codec,
        audit=container.audit,
        settings=container.settings,
        clock=lambda: utc_now() + timedelta(hours=container.settings.portal_session_ttl_hours + 1),
    )
    with pytest.raises(SessionExpired):
        await later.resolve_portal_auth("harbor", cookie)


@pytest.mark.asyncio
async def test_scope_mismatch_is_rejected(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    result = await onboard(container)
    cookie = await portal_cookie(container, result.session_id)
    auth_session_id = container.codec.verify(cookie)
    await container.store.auth_sessions.update(auth_session_id, {"client_id": "client_somebody_else"})
    with pytest.raises(ScopeInvalid):
        await container.portal_auth.resolve_portal_auth("harbor", cookie)


@pytest.mark.asyncio
async def test_password_setup_and_sign_in(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    result = await onboard(container)
    cookie = await portal_cookie(container, result.session_id)

    with pytest.raises(ValidationFailed) as exc_info:
        await container.portal_auth.set_password(brokerage_slug="harbor", signed_cookie_value=cookie, password="short")
    assert "password" in exc_info.value.field_errors

    await container.portal_auth.set_password(
        brokerage_slug="harbor", signed_cookie_value=cookie, password="a-strong-password"
    )
    client = await container.store.clients.get(result.client_id)
    assert client.has_password
    assert "a-strong-password" not in (client.password_hash or "")

    established = await container.portal_auth.authenticate_with_password(
        brokerage_slug="harbor", email=" OWNER@bakery.example ", password="a-strong-password"
    )
    assert established.requires_password_setup is False
    assert established.session_id == result.session_id
    assert "PASSWORD_SET" in await _actions(container, result.session_id)
    assert "PASSWORD_SIGN_IN" in await _actions(container, result.session_id)


@pytest.mark.asyncio
async def test_password_sign_in_is_tenant_scoped(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    await seed_brokerage(container, slug="other")
    result = await onboard(container)
    cookie = await portal_cookie(container, result.session_id)
    await container.portal_auth.set_password(
        brokerage_slug="harbor", signed_cookie_value=cookie, password="a-strong-password"
    )

    for slug, email, password in [
        ("other", "owner@bakery.example", "a-strong-password"),
        ("harbor", "owner@bakery.example", "wrong-password-1"),
        ("harbor", "nobody@bakery.example", "a-strong-password"),
        ("missing", "owner@bakery.example", "a-strong-password"),
    ]:
        with pytest.raises(InvalidCredentials):
            await container.portal_auth.authenticate_with_password(
                brokerage_slug=slug, email=email, password=password
            )


@pytest.mark.asyncio
async def test_sign_out_revokes_the_auth_session(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    result = await onboard(container)
    cookie = await portal_cookie(container, result.session_id)

    assert await container.portal_auth.sign_out(cookie) is True
    assert await container.portal_auth.sign_out(cookie) is False
    assert await container.portal_auth.sign_out("forged.value") is False
    with pytest.raises(SessionExpired):
        await container.portal_auth.resolve_portal_auth("harbor", cookie)
    assert "PORTAL_SIGNED_OUT" in await _actions(container, result.session_id)
