import secrets

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.db.session import get_session
from backend.app.services.errors import NotAuthenticated
from backend.app.services.session_service import (
    SessionData,
    session_max_age,
    validate_session,
)

SESSION_COOKIE = "session"
CSRF_HEADER = "x-csrf-token"


def clear_session(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE)


def set_session_cookie(response: Response, value: str) -> None:
    secure = settings.environment.lower() not in {"local", "dev", "development", "test"}
    response.set_cookie(
        SESSION_COOKIE,
        value,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=session_max_age(),
    )


async def get_session_data(
    request: Request, session: AsyncSession = Depends(get_session)
) -> SessionData | None:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    data = await validate_session(session, token)
    if data is None or data.identity != settings.admin_username:
        return None
    return data


def login_required(data: SessionData | None = Depends(get_session_data)) -> SessionData:
    if data is None:
        raise NotAuthenticated("Unauthorized access. Please login.")
    return data


def verify_csrf(request: Request, data: SessionData) -> None:
    token = request.headers.get(CSRF_HEADER) or ""
    if not secrets.compare_digest(token, data.csrf):
        raise NotAuthenticated("Missing or invalid CSRF token")


def csrf_protected(
    request: Request, data: SessionData = Depends(login_required)
) -> SessionData:
    verify_csrf(request, data)
    return data
