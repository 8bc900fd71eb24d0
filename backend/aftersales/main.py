"""
FastAPI application entrypoint.

Lifespan:
  • On startup: verify DB connectivity, purge stale rate-limit windows.
  • On shutdown: dispose the engine cleanly.

Routers:
  • /auth            — staff sign-in / sign-out
  • /v1/api-keys     — API key management (admin)
  • /v1/analytics    — request traffic insights (read)
  • /health          — shallow liveness probe

Every AuthError becomes {"success": false, "error": ..., "timestamp": ...}
with the error's status code; 401s carry a WWW-Authenticate header.
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from aftersales.auth.api_keys import ApiKeyStore, DatabaseKeyResolver, StaticKeyResolver
from aftersales.auth.errors import AuthError
from aftersales.auth.gateway import AuthGateway
from aftersales.auth.login_guard import LoginGuard
from aftersales.auth.tokens import TokenService
from aftersales.core.config import Settings, settings
from aftersales.core.database import async_session_factory, engine, get_db_session
from aftersales.middleware import RequestAnalyticsMiddleware
from aftersales.routers.analytics import router as analytics_router
from aftersales.routers.api_keys import router as api_keys_router
from aftersales.routers.auth import router as auth_router
from aftersales.schemas.envelope import ErrorBody
from aftersales.services.analytics import RequestAnalytics
from aftersales.services.rate_limiter import purge_stale_windows

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

WWW_AUTHENTICATE = 'Bearer realm="aftersales", ApiKey'


# ── Error rendering ─────────────────────────────────────────
def _error_response(status_code: int, message: str) -> JSONResponse:
    headers = {"WWW-Authenticate": WWW_AUTHENTICATE} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content=ErrorBody(error=message).model_dump(mode="json"),
        headers=headers,
    )


async def auth_error_handler(_request: Request, exc: AuthError) -> JSONResponse:
    return _error_response(exc.status_code, exc.message)


async def http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail))


# ── App factory ─────────────────────────────────────────────
def create_app(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    app_settings: Settings | None = None,
) -> FastAPI:
    """
    Build the application.

    Tests pass their own session_factory (SQLite) and settings; production
    uses the module-level engine and the environment.
    """
    cfg = app_settings or settings
    factory = session_factory or async_session_factory

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        """Startup / shutdown lifecycle."""

        # Startup — verify DB is reachable
        db_available = False
        try:
            async with factory() as session:
                await session.execute(text("SELECT 1"))
            logger.info("Database connection verified ✓")
            db_available = True
        except Exception:
            logger.warning(
                "Could not reach the database on startup. "
                "The app will start, but authenticated requests will "
                "fail closed (503) until the DB is available."
            )

        # Startup — drop rate-limit windows from previous hours
        if db_available:
            try:
                async with factory() as session:
                    removed = await purge_stale_windows(session)
                logger.info("Purged %d stale rate-limit window(s) ✓", removed)
            except Exception:
                logger.exception("Rate-limit window purge failed (non-fatal)")

        yield  # ← application runs here

        # Shutdown — clean up connection pool
        if session_factory is None:
            await engine.dispose()
            logger.info("Database engine disposed ✓")

    application = FastAPI(
        title=cfg.APP_NAME,
        version="0.1.0",
        description=(
            "After-sales request authentication and admission control — "
            "session tokens, API keys, rate limits and request analytics."
        ),
        lifespan=lifespan,
    )

    # ── Auth components ─────────────────────────────────────
    application.state.gateway = AuthGateway(
        token_service=TokenService(
            secret=cfg.JWT_SECRET,
            issuer=cfg.JWT_ISSUER,
            audience=cfg.JWT_AUDIENCE,
            ttl_seconds=cfg.JWT_TTL_SECONDS,
        ),
        key_store=ApiKeyStore([
            DatabaseKeyResolver(),
            StaticKeyResolver(cfg.STATIC_API_KEYS),
        ]),
        rate_limit_enabled=cfg.RATE_LIMIT_ENABLED,
        store_timeout=cfg.STORE_TIMEOUT_SECONDS,
    )
    application.state.login_guard = LoginGuard.from_settings(cfg)

    if session_factory is not None:
        async def _session_override() -> AsyncIterator[AsyncSession]:
            async with session_factory() as session:
                yield session

        application.dependency_overrides[get_db_session] = _session_override

    # ── Middleware / errors ─────────────────────────────────
    application.add_middleware(
        RequestAnalyticsMiddleware,
        analytics=RequestAnalytics(factory, prefix=cfg.API_PREFIX),
        prefix=cfg.API_PREFIX,
    )
    application.add_exception_handler(AuthError, auth_error_handler)  # type: ignore[arg-type]
    application.add_exception_handler(StarletteHTTPException, http_error_handler)  # type: ignore[arg-type]

    # Mount routers
    application.include_router(auth_router, prefix="/auth")
    application.include_router(api_keys_router, prefix=f"{cfg.API_PREFIX}/api-keys")
    application.include_router(analytics_router, prefix=f"{cfg.API_PREFIX}/analytics")

    # ── Health check ────────────────────────────────────────
    @application.get(
        "/health",
        tags=["System"],
        summary="Liveness probe",
    )
    async def health_check() -> dict[str, str]:
        """Shallow health check — confirms the process is alive."""
        return {"status": "healthy"}

    return application


app = create_app()
