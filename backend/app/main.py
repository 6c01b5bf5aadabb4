import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.config import settings
from backend.app.core.logging import setup_logging
from backend.app.core.time import utcnow
from backend.app.db.session import SessionLocal
from backend.app.models.activation_code import ActivationCode
from backend.app.services.admin_service import bootstrap_admin, get_admin
from backend.app.services.errors import AccountLocked, ServiceError, StoreUnavailable
from backend.app.web.routes import (
    activation_router,
    limiter,
    panel_router,
    router as admin_router,
)

logger = logging.getLogger(__name__)


async def bootstrap_with_retry(session_factory: async_sessionmaker[AsyncSession]) -> None:
    delay = 1.0
    for attempt in range(1, settings.bootstrap_retries + 1):
        try:
            async with session_factory() as session:
                await bootstrap_admin(session)
            return
        except (OperationalError, PoolTimeoutError, OSError) as exc:
            if attempt == settings.bootstrap_retries:
                raise StoreUnavailable("Store unavailable during bootstrap") from exc
            logger.warning(
                "Store unavailable during bootstrap (attempt %s/%s), retrying in %.0fs",
                attempt,
                settings.bootstrap_retries,
                delay,
            )
            await asyncio.sleep(delay)
            delay *= 2


@asynccontextmanager
async def lifespan(app: FastAPI):
    await bootstrap_with_retry(app.state.session_factory)
    yield


def create_app(session_factory: async_sessionmaker[AsyncSession] | None = None) -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.project_name, lifespan=lifespan)
    app.state.session_factory = session_factory or SessionLocal
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    origins = [o for o in settings.cors_origin_list if o != "*"]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
        )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if isinstance(exc, StoreUnavailable):
            logger.error("Store unavailable: %s", exc)
        content = {"success": False, "error": exc.code, "message": str(exc)}
        if isinstance(exc, AccountLocked):
            content["remainingMinutes"] = exc.remaining_minutes
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())[1:]),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "invalid_request",
                "message": "Validation error",
                "errors": errors,
            },
        )

    @app.exception_handler(OperationalError)
    @app.exception_handler(PoolTimeoutError)
    async def store_error_handler(request: Request, exc: Exception):
        logger.error("Store call failed on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "error": StoreUnavailable.code,
                "message": "Service temporarily unavailable",
            },
        )

    @app.get("/health")
    async def health() -> JSONResponse:
        try:
            async with app.state.session_factory() as session:
                codes_count = (
                    await session.execute(
                        select(func.count()).select_from(ActivationCode)
                    )
                ).scalar()
                admin = await get_admin(session)
        except (OperationalError, PoolTimeoutError, OSError) as exc:
            logger.error("Health check failed: %s", exc)
            return JSONResponse(
                status_code=503,
                content={"status": "error", "database": "disconnected"},
            )
        return JSONResponse(
            {
                "status": "ok",
                "database": "connected",
                "adminConfigured": admin is not None,
                "codesCount": codes_count,
                "timestamp": utcnow().isoformat(),
            }
        )

    app.include_router(panel_router)
    app.include_router(activation_router)
    app.include_router(admin_router)
    return app


app = create_app()
