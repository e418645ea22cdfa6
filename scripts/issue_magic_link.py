from __future__ import annotations

import argparse
import asyncio
import sys

from intakeportal.core.config import get_settings
from intakeportal.core.errors import NotFound
from intakeportal.services.container import build_container
from intakeportal.services.onboarding import build_magic_link_url


def _build_parser() -> argparse.ArgumentParser:
    # Support staff use this when a client cannot find their invite email.
    parser = argparse.ArgumentParser(description="Issue a single-use magic link for an intake session")
    parser.add_argument("--session-id", required=True, help="Intake session identifier")
    parser.add_argument("--send", action="store_true", help="Email the link instead of only printing it")
    return parser


async def _issue(args: argparse.Namespace) -> int:
    container = build_container(get_settings())
    await container.store.initialize()
    try:
        if args.send:
            invite = await container.onboarding.send_invite_for_session(args.session_id)
            url = invite.magic_link_url
            print(f"delivery_status: {invite.delivery_status.value}")
        else:
            session = await container.store.sessions.get(args.session_id)
            if session is None:
                raise NotFound("intake_session", args.session_id)
            brokerage = await container.brokerages.get(session.brokerage_id)
            issued = await container.portal_auth.issue_magic_link(session.id)
            url = build_magic_link_url(brokerage.portal_base_url, issued.raw_token)
    finally:
        await container.store.close()

    print("Magic link issued:")
    print(f"  {url}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_issue(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"issue_magic_link failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
