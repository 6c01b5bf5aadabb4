import logging

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.time import utcnow
from backend.app.models.admin_audit_log import AdminAuditLog

logger = logging.getLogger(__name__)


async def log_action(
    session: AsyncSession, *, actor: str, action: str, payload: dict
) -> AdminAuditLog:
    """Stage an audit row; it is persisted with the caller's commit."""
    entry = AdminAuditLog(
        actor=actor,
        action=action,
        payload=payload,
        created_at=utcnow(),
    )
    session.add(entry)
    logger.debug("Audit %s by %s", action, actor)
    return entry
