from __future__ import annotations

import argparse
import asyncio
import sys

from intakeportal.core.config import get_settings
from intakeportal.services.brokerages import BrandingPatch, BrokerageCreate
from intakeportal.services.container import build_container


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create a brokerage tenant")
    parser.add_argument("--slug", required=True, help="URL slug, lowercase letters, digits and dashes")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument("--sender-name", required=True, help="From name on client emails")
    parser.add_argument("--sender-email", required=True, help="From address on client emails")
    parser.add_argument("--portal-base-url", required=True, help="Base URL for magic links")
    parser.add_argument("--short-name", default=None)
    parser.add_argument("--primary-color", default=None, help="Hex colour, e.g. #0b3d91")
    parser.add_argument("--drive-parent-folder-id", default=None)
    return parser


async def _create(args: argparse.Namespace) -> int:
    container = build_container(get_settings())
    await container.store.initialize()
    try:
        brokerage = await container.brokerages.create(
            BrokerageCreate(
                slug=args.slug,
                name=args.name,
                short_name=args.short_name,
                sender_name=args.sender_name,
                sender_email=args.sender_email,
                portal_base_url=args.portal_base_url,
                drive_parent_folder_id=args.drive_parent_folder_id,
                branding=BrandingPatch(primary_color=args.primary_color) if args.primary_color else None,
            )
        )
    finally:
        await container.store.close()

    print("Brokerage created:")
    print(f"  id: {brokerage.id}")
    print(f"  slug: {brokerage.slug}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_create(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_brokerage failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
