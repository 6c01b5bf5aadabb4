import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, case, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.security import (
    PASSWORD_MAX_BYTES,
    hash_password,
    password_fits,
    password_is_strong,
    verify_password,
)
from backend.app.core.time import utcnow
from backend.app.db.types import UTCDateTime
from backend.app.models.admin_identity import AdminIdentity
from backend.app.services import session_service
from backend.app.services.errors import (
    AccountLocked,
    InvalidCredential,
    InvalidRequest,
    SamePassword,
    WeakCredential,
)
from backend.app.services.session_service import SessionData

logger = logging.getLogger(__name__)


def ensure_password_fits(password: str) -> None:
    if not password_fits(password):
        raise InvalidRequest(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")


@dataclass(frozen=True)
class IssuedSession:
    token: str
    data: SessionData
    username: str
    last_changed: datetime


async def get_admin(session: AsyncSession, *, refresh: bool = False) -> AdminIdentity | None:
    query = select(AdminIdentity).where(AdminIdentity.name == settings.admin_username)
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def bootstrap_admin(
    session: AsyncSession, *, password: str | None = None
) -> AdminIdentity:
    """Create the admin identity if it does not exist yet. Commits."""
    admin = await get_admin(session)
    if admin:
        return admin

    initial = password or settings.default_admin_password
    ensure_password_fits(initial)
    now = utcnow()
    admin = AdminIdentity(
        name=settings.admin_username,
        password_hash=hash_password(initial),
        failed_attempts=0,
        locked_until=None,
        last_changed=now,
        created_at=now,
    )
    session.add(admin)
    try:
        await session.commit()
    except IntegrityError:
        # another replica bootstrapped first
        await session.rollback()
        admin = await get_admin(session)
        if admin is None:
            raise
        return admin
    if password is None:
        logger.warning(
            "Default admin %r created, change the initial password",
            settings.admin_username,
        )
    else:
        logger.info("Admin %r created", settings.admin_username)
    return admin


async def record_failed_attempt(session: AsyncSession, *, now: datetime) -> AdminIdentity:
    """Count a failed login in one statement, engaging the lock at the limit.

    An elapsed lock means the previous streak is over, so the counter restarts
    at 1 instead of continuing from the stale value.
    """
    lock_elapsed = and_(
        AdminIdentity.locked_until.is_not(None), AdminIdentity.locked_until <= now
    )
    lock_active = and_(
        AdminIdentity.locked_until.is_not(None), AdminIdentity.locked_until > now
    )
    next_count = case((lock_elapsed, 1), else_=AdminIdentity.failed_attempts + 1)
    lock_until = literal(now + timedelta(hours=settings.lockout_hours), UTCDateTime())
    await session.execute(
        update(AdminIdentity)
        .where(AdminIdentity.name == settings.admin_username)
        .values(
            failed_attempts=next_count,
            locked_until=case(
                (lock_active, AdminIdentity.locked_until),
                (next_count >= settings.lockout_max_attempts, lock_until),
                else_=None,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    admin = await get_admin(session, refresh=True)
    if admin.locked_until and admin.locked_until > now:
        logger.warning(
            "Admin locked until %s after %s failed attempts",
            admin.locked_until.isoformat(),
            admin.failed_attempts,
        )
    return admin


async def authenticate(session: AsyncSession, *, password: str) -> IssuedSession:
    """Check the admin password and issue a session token.

    Rejections still mutate the lockout counter, so callers must commit even
    when this raises.
    """
    admin = await get_admin(session, refresh=True)
    if admin is None:
        logger.error("Admin identity missing, was bootstrap skipped?")
        raise InvalidCredential("Invalid password")

    now = utcnow()
    if admin.locked_until and admin.locked_until > now:
        raise AccountLocked(admin.locked_until - now)

    if not verify_password(password, admin.password_hash):
        await record_failed_attempt(session, now=now)
        raise InvalidCredential("Invalid password")

    if admin.failed_attempts or admin.locked_until:
        await session.execute(
            update(AdminIdentity)
            .where(AdminIdentity.id == admin.id)
            .values(failed_attempts=0, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        admin = await get_admin(session, refresh=True)

    token, data = session_service.create_session(admin.name)
    return IssuedSession(
        token=token, data=data, username=admin.name, last_changed=admin.last_changed
    )


async def change_credential(
    session: AsyncSession, *, current: str, proposed: str
) -> AdminIdentity:
    """Replace the admin password and invalidate every session of the admin.

    A wrong ``current`` password is rejected without touching the lockout
    counter: this runs inside an already authenticated session.
    """
    admin = await get_admin(session, refresh=True)
    if admin is None or not verify_password(current, admin.password_hash):
        raise InvalidCredential("Current password is incorrect")
    ensure_password_fits(proposed)
    if verify_password(proposed, admin.password_hash):
        raise SamePassword("New password must be different from current password")
    if not password_is_strong(proposed):
        raise WeakCredential(
            f"Password must be at least {settings.password_min_length} characters"
            " and contain letters and numbers"
        )

    result = await session.execute(
        update(AdminIdentity)
        .where(
            AdminIdentity.id == admin.id,
            AdminIdentity.password_hash == admin.password_hash,
        )
        .values(password_hash=hash_password(proposed), last_changed=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidCredential("Password was changed concurrently, log in again")

    await session_service.invalidate_all(session, identity=admin.name)
    logger.info("Admin password changed")
    return await get_admin(session, refresh=True)


async def reset_credential(session: AsyncSession, *, password: str) -> AdminIdentity:
    """Operator reset: set a new password, lift any lock, drop all sessions."""
    ensure_password_fits(password)
    admin = await get_admin(session)
    if admin is None:
        return await bootstrap_admin(session, password=password)

    await session.execute(
        update(AdminIdentity)
        .where(AdminIdentity.id == admin.id)
        .values(
            password_hash=hash_password(password),
            failed_attempts=0,
            locked_until=None,
            last_changed=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    await session_service.invalidate_all(session, identity=admin.name)
    logger.warning("Admin password reset by operator")
    return await get_admin(session, refresh=True)
