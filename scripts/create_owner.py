from __future__ import annotations

import argparse
import asyncio
import sys

from securedocs.persistence.db import SessionLocal
from securedocs.services.auth.tokens import issue_session_token
from securedocs.services.owners import provision_owner


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Provision a document owner and print a session token")
    parser.add_argument("--name", required=True, help="Owner full name")
    parser.add_argument("--email", default=None, help="Optional owner email")
    parser.add_argument("--phone", default=None, help="Mobile number used for owner re-authentication")
    parser.add_argument("--pin", default=None, help="Numeric PIN paired with --phone")
    parser.add_argument("--plan", default=None, help="Plan name (defaults to the configured default plan)")
    return parser


async def _create_owner(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        user = await provision_owner(
            session=session,
            full_name=args.name,
            email=args.email,
            phone=args.phone,
            pin=args.pin,
            plan_name=args.plan,
            actor_id="create_owner",
        )

    token = issue_session_token(user_id=user.id, email=user.email)
    print("Owner created:")
    print(f"  user_id: {user.id}")
    print("  session_token: ")
    print(f"    {token}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_owner(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_owner failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
