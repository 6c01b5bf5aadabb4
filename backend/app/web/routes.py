from datetime import datetime
from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.security import PASSWORD_MAX_BYTES
from backend.app.db.session import get_session
from backend.app.models.activation_code import ActivationCode
from backend.app.services.activation_service import (
    add_code,
    bind_code,
    get_code_stats,
    list_codes,
    remove_code,
    require_code,
)
from backend.app.services.admin_service import authenticate, change_credential, get_admin
from backend.app.services.audit_service import log_action
from backend.app.services.errors import (
    AccountLocked,
    InvalidCredential,
    InvalidRequest,
    UnknownCode,
)
from backend.app.services.session_service import SessionData
from backend.app.web.auth import (
    CSRF_HEADER,
    clear_session,
    csrf_protected,
    get_session_data,
    login_required,
    set_session_cookie,
    verify_csrf,
)
from backend.app.web.schemas import (
    ActivateRequest,
    AddCodeRequest,
    ChangePasswordRequest,
    LoginRequest,
)

limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/admin", tags=["admin"])
activation_router = APIRouter(tags=["activation"])
panel_router = APIRouter(tags=["panel"])

env = Environment(
    loader=FileSystemLoader(Path(__file__).resolve().parent / "templates"),
    autoescape=select_autoescape(["html"]),
)


def client_ip(request: Request) -> str:
    peer = get_remote_address(request)
    forwarded_for = request.headers.get("x-forwarded-for", "")
    if forwarded_for and peer in settings.trusted_proxy_list:
        return forwarded_for.split(",")[0].strip()
    return peer


def render(template_name: str, **context) -> HTMLResponse:
    template = env.get_template(template_name)
    return HTMLResponse(template.render(**context))


def format_dt(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def serialize_code(entry: ActivationCode) -> dict:
    return {
        "code": entry.code,
        "used": entry.used,
        "deviceId": entry.bound_device,
        "activatedAt": format_dt(entry.activated_at),
        "createdAt": format_dt(entry.created_at),
    }


@panel_router.get("/", include_in_schema=False)
@panel_router.get("/admin", include_in_schema=False)
async def admin_panel(request: Request):
    return render(
        "admin.html",
        request=request,
        project_name=settings.project_name,
        username=settings.admin_username,
        password_min_length=settings.password_min_length,
        password_max_bytes=PASSWORD_MAX_BYTES,
    )


@activation_router.post("/activate")
@limiter.limit(settings.activate_rate_limit)
async def activate(
    request: Request,
    body: ActivateRequest,
    session: AsyncSession = Depends(get_session),
):
    try:
        result = await bind_code(session, code=body.code, device_id=body.device_id)
    except UnknownCode:
        # devices get a soft answer rather than an error status
        return JSONResponse({"success": False, "bound": False, "message": "Invalid code"})
    await session.commit()
    return JSONResponse(
        {
            "success": True,
            "bound": True,
            "message": (
                "Already activated on this device"
                if result.replayed
                else "Activation successful"
            ),
            "activatedAt": format_dt(result.activated_at),
        }
    )


@router.post("/login")
@limiter.limit(settings.login_rate_limit)
async def login_action(
    request: Request,
    body: LoginRequest,
    session: AsyncSession = Depends(get_session),
):
    ip = client_ip(request)
    try:
        issued = await authenticate(session, password=body.password)
    except AccountLocked as exc:
        await log_action(
            session,
            actor=ip,
            action="login_blocked",
            payload={"ip": ip, "remaining_minutes": exc.remaining_minutes},
        )
        await session.commit()
        raise
    except InvalidCredential:
        admin = await get_admin(session)
        await log_action(
            session,
            actor=ip,
            action="login_failed",
            payload={
                "ip": ip,
                "failed_count": admin.failed_attempts if admin else None,
                "locked_until": format_dt(admin.locked_until) if admin else None,
            },
        )
        await session.commit()
        raise

    await log_action(
        session,
        actor=issued.username,
        action="login_success",
        payload={"ip": ip},
    )
    await session.commit()

    response = JSONResponse(
        {
            "success": True,
            "message": "Login successful",
            "csrfToken": issued.data.csrf,
            "admin": {
                "username": issued.username,
                "lastChanged": format_dt(issued.last_changed),
            },
        }
    )
    set_session_cookie(response, issued.token)
    return response


@router.post("/logout")
async def logout_action(
    request: Request,
    data: SessionData = Depends(login_required),
    session: AsyncSession = Depends(get_session),
):
    if request.headers.get(CSRF_HEADER):
        verify_csrf(request, data)
    await log_action(
        session,
        actor=data.identity,
        action="logout",
        payload={"ip": client_ip(request)},
    )
    await session.commit()
    response = JSONResponse({"success": True, "message": "Logged out successfully"})
    clear_session(response)
    return response


@router.get("/session")
async def session_status(data: SessionData | None = Depends(get_session_data)):
    if data is None:
        return JSONResponse({"success": True, "authenticated": False})
    return JSONResponse(
        {
            "success": True,
            "authenticated": True,
            "csrfToken": data.csrf,
            "issuedAt": format_dt(data.issued_at),
        }
    )


@router.post("/change-password")
async def change_password_action(
    request: Request,
    body: ChangePasswordRequest,
    data: SessionData = Depends(csrf_protected),
    session: AsyncSession = Depends(get_session),
):
    if body.confirm_password is not None and body.confirm_password != body.new_password:
        raise InvalidRequest("Passwords do not match")
    await change_credential(
        session, current=body.current_password, proposed=body.new_password
    )
    await log_action(
        session,
        actor=data.identity,
        action="password_changed",
        payload={"ip": client_ip(request)},
    )
    await session.commit()
    response = JSONResponse(
        {
            "success": True,
            "message": "Password changed successfully. Please login again.",
        }
    )
    clear_session(response)
    return response


@router.get("/stats")
async def stats(
    data: SessionData = Depends(login_required),
    session: AsyncSession = Depends(get_session),
):
    code_stats = await get_code_stats(
        session, recent_limit=settings.recent_activations_limit
    )
    admin = await get_admin(session)
    return JSONResponse(
        {
            "success": True,
            "stats": {
                "totalCodes": code_stats.total,
                "usedCodes": code_stats.used,
                "availableCodes": code_stats.available,
                "uniqueDevices": code_stats.unique_devices,
                "lastPasswordChange": format_dt(admin.last_changed) if admin else None,
            },
            "recentActivations": [
                {
                    "code": entry.code,
                    "deviceId": entry.bound_device,
                    "activatedAt": format_dt(entry.activated_at),
                }
                for entry in code_stats.recent
            ],
        }
    )


@router.get("/codes")
async def codes_list(
    data: SessionData = Depends(login_required),
    session: AsyncSession = Depends(get_session),
):
    rows = await list_codes(session)
    return JSONResponse(
        {"success": True, "count": len(rows), "codes": [serialize_code(r) for r in rows]}
    )


@router.post("/codes")
async def codes_create(
    request: Request,
    body: AddCodeRequest,
    data: SessionData = Depends(csrf_protected),
    session: AsyncSession = Depends(get_session),
):
    entry = await add_code(session, code=body.code)
    await log_action(
        session,
        actor=data.identity,
        action="code_added",
        payload={"code": entry.code},
    )
    await session.commit()
    return JSONResponse(
        {
            "success": True,
            "message": "Code added successfully",
            "code": serialize_code(entry),
        },
        status_code=201,
    )


@router.get("/codes/{code}")
async def codes_detail(
    code: str,
    data: SessionData = Depends(login_required),
    session: AsyncSession = Depends(get_session),
):
    entry = await require_code(session, code)
    return JSONResponse({"success": True, "code": serialize_code(entry)})


@router.delete("/codes/{code}")
async def codes_delete(
    code: str,
    data: SessionData = Depends(csrf_protected),
    session: AsyncSession = Depends(get_session),
):
    removed = await remove_code(session, code=code)
    await log_action(
        session,
        actor=data.identity,
        action="code_deleted",
        payload={
            "code": removed.code,
            "was_used": removed.was_used,
            "device_id": removed.device_id,
        },
    )
    await session.commit()
    if removed.was_used:
        message = (
            "Bound code deleted"
            f" (was bound to device: {removed.device_id or 'unknown'})"
        )
    else:
        message = "Code deleted"
    return JSONResponse(
        {
            "success": True,
            "message": message,
            "deletedCode": {
                "code": removed.code,
                "wasUsed": removed.was_used,
                "deviceId": removed.device_id,
            },
        }
    )
