import logging
import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.time import utcnow
from backend.app.models.activation_code import ActivationCode
from backend.app.services.errors import (
    DeviceConflict,
    DuplicateCode,
    InvalidRequest,
    StoreUnavailable,
    UnknownCode,
)

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,50}$")
DEVICE_ID_MIN_LENGTH = 3
DEVICE_ID_MAX_LENGTH = 100


@dataclass(frozen=True)
class BindResult:
    code: str
    device_id: str
    activated_at: datetime
    replayed: bool


@dataclass(frozen=True)
class RemovedCode:
    code: str
    was_used: bool
    device_id: str | None


@dataclass(frozen=True)
class CodeStats:
    total: int
    used: int
    available: int
    unique_devices: int
    recent: list[ActivationCode]


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def normalize_device_id(device_id: str | None) -> str:
    return (device_id or "").strip()


async def get_code(
    session: AsyncSession, code: str, *, refresh: bool = False
) -> ActivationCode | None:
    query = select(ActivationCode).where(ActivationCode.code == normalize_code(code))
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def require_code(
    session: AsyncSession, code: str, *, refresh: bool = False
) -> ActivationCode:
    entry = await get_code(session, code, refresh=refresh)
    if not entry:
        raise UnknownCode("Code not found")
    return entry


async def list_codes(session: AsyncSession) -> list[ActivationCode]:
    result = await session.execute(
        select(ActivationCode).order_by(
            ActivationCode.created_at.desc(), ActivationCode.id.desc()
        )
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def add_code(session: AsyncSession, *, code: str) -> ActivationCode:
    normalized = normalize_code(code)
    if not CODE_PATTERN.match(normalized):
        raise InvalidRequest(
            "Code must be 3-50 characters: letters, numbers, hyphens and underscores"
        )

    existing = await get_code(session, normalized)
    if existing:
        raise DuplicateCode("Code already exists")

    entry = ActivationCode(code=normalized, used=False, created_at=utcnow())
    session.add(entry)
    try:
        await session.flush()
    except IntegrityError as exc:
        # another writer inserted the same code after our lookup
        await session.rollback()
        raise DuplicateCode("Code already exists") from exc
    logger.info("Activation code %s added", normalized)
    return entry


async def bind_code(session: AsyncSession, *, code: str, device_id: str) -> BindResult:
    """Bind ``code`` to ``device_id`` exactly once.

    The unused -> used transition is a single conditional UPDATE, so when
    several workers race on the same code only one statement matches the row.
    Losers re-read the committed state and fall into the replay or conflict
    branch. A code that reads back as unused was deleted and reissued between
    the two statements, which is retried up to ``bind_max_retries`` times.
    """
    normalized = normalize_code(code)
    device = normalize_device_id(device_id)
    if not normalized or not device:
        raise InvalidRequest("Code and device id are required")
    if not DEVICE_ID_MIN_LENGTH <= len(device) <= DEVICE_ID_MAX_LENGTH:
        raise InvalidRequest("Invalid device id")

    for _ in range(settings.bind_max_retries):
        now = utcnow()
        result = await session.execute(
            update(ActivationCode)
            .where(ActivationCode.code == normalized, ActivationCode.used.is_(False))
            .values(used=True, bound_device=device, activated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info("Activated code %s for device %s", normalized, device)
            return BindResult(
                code=normalized, device_id=device, activated_at=now, replayed=False
            )

        entry = await get_code(session, normalized, refresh=True)
        if not entry:
            raise UnknownCode("Invalid code")
        if not entry.used:
            continue
        if entry.bound_device == device:
            return BindResult(
                code=normalized,
                device_id=device,
                activated_at=entry.activated_at,
                replayed=True,
            )
        logger.warning(
            "Code %s already bound to another device, rejected device %s",
            normalized,
            device,
        )
        raise DeviceConflict(
            "This code is already used on another device. Please contact the admin."
        )

    raise StoreUnavailable("Activation state kept changing, retry later")


async def remove_code(session: AsyncSession, *, code: str) -> RemovedCode:
    normalized = normalize_code(code)
    if not normalized:
        raise InvalidRequest("Code is required")
    entry = await require_code(session, normalized, refresh=True)
    summary = RemovedCode(
        code=entry.code, was_used=entry.used, device_id=entry.bound_device
    )

    result = await session.execute(
        delete(ActivationCode)
        .where(ActivationCode.code == normalized)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise UnknownCode("Code not found")
    session.expunge(entry)
    if summary.was_used:
        logger.info(
            "Deleted bound code %s (was bound to device %s)",
            normalized,
            summary.device_id,
        )
    else:
        logger.info("Deleted code %s", normalized)
    return summary


async def get_code_stats(session: AsyncSession, *, recent_limit: int) -> CodeStats:
    total = (
        await session.execute(select(func.count()).select_from(ActivationCode))
    ).scalar()
    used = (
        await session.execute(
            select(func.count())
            .select_from(ActivationCode)
            .where(ActivationCode.used.is_(True))
        )
    ).scalar()
    unique_devices = (
        await session.execute(
            select(func.count(func.distinct(ActivationCode.bound_device))).where(
                ActivationCode.used.is_(True),
                ActivationCode.bound_device.is_not(None),
            )
        )
    ).scalar()
    recent = (
        await session.execute(
            select(ActivationCode)
            .where(ActivationCode.used.is_(True))
            .order_by(ActivationCode.activated_at.desc())
            .limit(recent_limit)
            .execution_options(populate_existing=True)
        )
    ).scalars().all()
    return CodeStats(
        total=total,
        used=used,
        available=total - used,
        unique_devices=unique_devices,
        recent=list(recent),
    )
