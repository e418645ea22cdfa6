from __future__ import annotations

import asyncio
import sys

from intakeportal.core.config import get_settings
from intakeportal.core.errors import ConflictError
from intakeportal.services.brokerages import BrandingPatch, BrokerageCreate
from intakeportal.services.container import build_container


DEMO_BROKERAGE_SLUG = "harbor-commercial"
DEMO_CLIENT_EMAIL = "owner@bluefinbakery.example"


async def _seed() -> int:
    settings = get_settings()
    container = build_container(settings)
    await container.store.initialize()
    try:
        try:
            brokerage = await container.brokerages.create(
                BrokerageCreate(
                    slug=DEMO_BROKERAGE_SLUG,
                    name="Harbor Commercial Insurance",
                    short_name="Harbor",
                    sender_name="Harbor Client Desk",
                    sender_email="clients@harbor.example",
                    portal_base_url=settings.default_portal_base_url,
                    branding=BrandingPatch(primary_color="#0b3d91", secondary_color="#f2a900"),
                )
            )
        except ConflictError:
            # Re-running the seed keeps the existing tenant.
            brokerage = await container.brokerages.get_by_slug(DEMO_BROKERAGE_SLUG)

        result = await container.onboarding.create_or_update_client_onboarding(
            brokerage_slug=brokerage.slug,
            business_name="Bluefin Bakery LLC",
            contact_name="Dana Reyes",
            email=DEMO_CLIENT_EMAIL,
            phone="555-0142",
            trigger_invite=True,
        )
    finally:
        await container.store.close()

    print("Demo data seeded:")
    print(f"  brokerage: {brokerage.slug} ({brokerage.id})")
    print(f"  client_id: {result.client_id}")
    print(f"  session_id: {result.session_id}")
    if result.magic_link_url:
        print(f"  magic_link: {result.magic_link_url}")
    return 0


def main() -> int:
    try:
        return asyncio.run(_seed())
    except Exception as exc:  # noqa: BLE001 - surface seed failures clearly
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
