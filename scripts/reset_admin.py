#!/usr/bin/env python
import argparse
import asyncio
import getpass

from backend.app.core.config import settings
from backend.app.core.logging import setup_logging
from backend.app.core.security import PASSWORD_MAX_BYTES, password_fits, password_is_strong
from backend.app.db.session import SessionLocal, engine
from backend.app.services.admin_service import reset_credential
from backend.app.services.audit_service import log_action


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Reset the admin password, lift the lockout and log out all sessions"
    )
    parser.add_argument(
        "--password",
        help="New password (prompted when omitted; empty input keeps the configured default)",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    password = args.password
    if password is None:
        password = getpass.getpass("New admin password: ") or settings.default_admin_password
    if not password_fits(password):
        raise SystemExit(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
    if not password_is_strong(password):
        print("Warning: password does not meet the strength policy")

    setup_logging()
    async with SessionLocal() as session:
        await reset_credential(session, password=password)
        await log_action(
            session,
            actor="operator",
            action="password_reset_cli",
            payload={"username": settings.admin_username},
        )
        await session.commit()
    await engine.dispose()
    print(f"Admin {settings.admin_username!r} password reset, please log in again")


if __name__ == "__main__":
    asyncio.run(main())
