from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from intakeportal.core.errors import ConflictError, NotFound, ValidationFailed
from intakeportal.domain.models import OnboardingSource
from intakeportal.services.brokerages import BrandingPatch, BrokerageCreate, BrokeragePatch
from intakeportal.services.container import ServiceContainer
from intakeportal.tests.utils.factories import onboard, seed_brokerage


@pytest.mark.asyncio
async def test_brokerage_slugs_are_validated_and_unique(container: ServiceContainer) -> None:
    await seed_brokerage(container, "harbor")
    with pytest.raises(ConflictError):
        await seed_brokerage(container, "harbor")
    with pytest.raises(ValidationFailed) as exc_info:
        await seed_brokerage(container, "Harbor Brokers")
    assert "slug" in exc_info.value.field_errors


@pytest.mark.asyncio
async def test_brokerage_patch_merges_branding_and_archive_hides_listing(container: ServiceContainer) -> None:
    brokerage = await seed_brokerage(container, "harbor", branding=BrandingPatch(primary_color="#003366"))
    await seed_brokerage(container, "atlas")

    patched = await container.brokerages.update_settings(
        brokerage.id,
        BrokeragePatch(portal_base_url="https://portal.harbor.example/", branding=BrandingPatch(legal_footer="AFSL 1")),
    )
    assert patched.slug == "harbor"
    assert patched.portal_base_url == "https://portal.harbor.example"
    assert patched.branding.primary_color == "#003366"
    assert patched.branding.legal_footer == "AFSL 1"

    await container.brokerages.set_archived(brokerage.id, True)
    assert [item.slug for item in await container.brokerages.list()] == ["atlas"]
    listed = await container.brokerages.list(include_archived=True)
    assert sorted(item.slug for item in listed) == ["atlas", "harbor"]
    # Archived tenants still resolve for their existing clients.
    assert (await container.brokerages.theme("harbor")).is_archived is True


@pytest.mark.asyncio
async def test_onboarding_validates_inputs(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    with pytest.raises(ValidationFailed) as exc_info:
        await container.onboarding.create_or_update_client_onboarding(
            brokerage_slug="harbor", business_name=" ", contact_name="", email="not-an-email"
        )
    assert set(exc_info.value.field_errors) == {"business_name", "contact_name", "email"}
    with pytest.raises(NotFound):
        await onboard(container, slug="missing")


@pytest.mark.asyncio
async def test_reonboarding_reuses_client_and_session(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    first = await onboard(container)
    await container.operator.set_client_archived(first.session_id, True, operator_email="ops@klor.example")

    second = await onboard(container, email="  OWNER@Bakery.example ")
    assert second.client_id == first.client_id
    assert second.session_id == first.session_id
    client = await container.store.clients.get(first.client_id)
    assert client.email == "owner@bakery.example"
    assert client.is_archived is False
    assert await container.store.sessions.count(client_id=first.client_id) == 1


@pytest.mark.asyncio
async def test_same_email_in_another_tenant_is_a_separate_client(container: ServiceContainer) -> None:
    await seed_brokerage(container, "harbor")
    await seed_brokerage(container, "atlas")
    harbor = await onboard(container, slug="harbor")
    atlas = await onboard(container, slug="atlas")
    assert harbor.client_id != atlas.client_id
    assert harbor.session_id != atlas.session_id


@pytest.mark.asyncio
async def test_webhook_idempotency_key_replays_the_first_result(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    kwargs = dict(
        brokerage_slug="harbor",
        business_name="Bluefin Bakery",
        contact_name="Dana Reyes",
        email="owner@bakery.example",
        source=OnboardingSource.API,
        idempotency_key="crm-123",
        trigger_invite=True,
    )
    first = await container.onboarding.create_or_update_client_onboarding(**kwargs)
    replay = await container.onboarding.create_or_update_client_onboarding(**kwargs)

    assert first.invite_sent is True and first.replayed is False
    assert replay.replayed is True and replay.invite_sent is False
    assert (replay.client_id, replay.session_id) == (first.client_id, first.session_id)
    assert await container.store.emails.count(session_id=first.session_id) == 1
    assert await container.store.webhook_keys.count(idempotency_key="crm-123") == 1


@pytest.mark.asyncio
async def test_invite_records_email_and_redacts_link_in_audit(container: ServiceContainer) -> None:
    brokerage = await seed_brokerage(container)
    result = await onboard(container, trigger_invite=True)

    assert result.invite_sent is True
    parsed = urlparse(result.magic_link_url)
    assert f"{parsed.scheme}://{parsed.netloc}" == brokerage.portal_base_url
    assert parsed.path == "/portal/auth/magic"
    token = parse_qs(parsed.query)["token"][0]
    established = await container.portal_auth.consume_magic_link_and_authenticate(token)
    assert established.session_id == result.session_id

    emails = await container.store.emails.find(session_id=result.session_id)
    assert len(emails) == 1
    assert emails[0].recipient == "owner@bakery.example"
    assert emails[0].from_email == brokerage.sender_email

    session = await container.store.sessions.get(result.session_id)
    assert session.invite_sent_at is not None
    assert session.drive_folder_url is not None

    timeline = await container.audit.timeline(result.session_id)
    invited = [entry for entry in timeline if entry.action == "CLIENT_INVITED"]
    assert invited[0].details["magic_link_url"] == "[REDACTED]"
    assert invited[0].details["delivery_status"] == "recorded"
    assert token not in str([entry.details for entry in timeline])


@pytest.mark.asyncio
async def test_magic_link_request_only_emails_known_clients(container: ServiceContainer) -> None:
    await seed_brokerage(container)
    await seed_brokerage(container, "atlas")
    result = await onboard(container)

    assert await container.onboarding.request_magic_link(brokerage_slug="harbor", email="Owner@Bakery.example") is True
    assert await container.onboarding.request_magic_link(brokerage_slug="harbor", email="stranger@x.example") is False
    assert await container.onboarding.request_magic_link(brokerage_slug="atlas", email="owner@bakery.example") is False
    assert await container.onboarding.request_magic_link(brokerage_slug="nowhere", email="owner@bakery.example") is False
    assert await container.store.emails.count(session_id=result.session_id) == 1
