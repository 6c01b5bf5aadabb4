"""Signed admin session tokens.

Tokens are issued with itsdangerous and carry the identity, the issue time and
a CSRF secret. Nothing about a live session is stored server side; the only
persisted state is a per-identity revocation marker written by
``invalidate_all`` so that every replica rejects older tokens.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from itsdangerous import BadData, URLSafeTimedSerializer
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.time import utcnow
from backend.app.models.admin_session_revocation import AdminSessionRevocation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionData:
    identity: str
    issued_at: datetime
    csrf: str


def get_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.session_secret, salt="admin-session")


def session_max_age() -> int:
    return settings.session_ttl_hours * 60 * 60


def create_session(identity: str) -> tuple[str, SessionData]:
    data = SessionData(
        identity=identity,
        issued_at=utcnow(),
        csrf=secrets.token_urlsafe(16),
    )
    token = get_serializer().dumps(
        {"u": data.identity, "iat": data.issued_at.isoformat(), "csrf": data.csrf}
    )
    return token, data


async def validate_session(session: AsyncSession, token: str) -> SessionData | None:
    try:
        payload = get_serializer().loads(token, max_age=session_max_age())
    except BadData:
        return None
    try:
        data = SessionData(
            identity=payload["u"],
            issued_at=datetime.fromisoformat(payload["iat"]),
            csrf=payload["csrf"],
        )
    except (KeyError, TypeError, ValueError):
        return None

    revocation = await session.get(
        AdminSessionRevocation, data.identity, populate_existing=True
    )
    if revocation and data.issued_at <= revocation.revoked_at:
        return None
    return data


UPSERT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


async def invalidate_all(session: AsyncSession, *, identity: str) -> None:
    """Move the revocation marker of ``identity`` to now, creating it if needed.

    One upsert, so concurrent first-time calls still leave a single row.
    """
    insert = UPSERT_INSERTS[session.get_bind().dialect.name]
    stmt = insert(AdminSessionRevocation).values(identity=identity, revoked_at=utcnow())
    await session.execute(
        stmt.on_conflict_do_update(
            index_elements=[AdminSessionRevocation.identity],
            set_={"revoked_at": stmt.excluded.revoked_at},
        )
    )
    logger.info("All sessions of %s invalidated", identity)
