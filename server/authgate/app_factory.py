from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import Base, engine
from .errors import AuthError, ConfigError
from .routers import auth, oauth, twofa
from .services.crypto import CryptoLayer, EncryptionKey

logger = logging.getLogger(__name__)


def _check_settings() -> None:
    from .config import settings

    if not settings.session_secret:
        if settings.production:
            raise ConfigError("SESSION_SECRET is required when PRODUCTION=true")
        logger.warning("SESSION_SECRET not set; using a per-process secret (sessions will not survive restarts)")

    if (settings.google_client_id or settings.google_client_secret) and not settings.oauth_enabled:
        logger.warning("Google OAuth partially configured; OAuth disabled (need GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)")


def _startup() -> None:
    from .config import settings

    if bool(getattr(settings, "db_auto_create_tables", True)):
        Base.metadata.create_all(bind=engine)
        logger.info("DB auto-create enabled: ensured database tables exist")
    else:
        logger.info("DB auto-create disabled: expecting schema to be managed by Alembic")
        if bool(getattr(settings, "db_require_migrations_up_to_date", True)):
            from .services.migrations_check import assert_db_up_to_date

            assert_db_up_to_date(engine)
            logger.info("Alembic migration status OK (DB is at head)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    _startup()
    yield


def create_app() -> FastAPI:
    from .config import settings

    # Configure logging (keep simple)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Fail fast: never serve traffic with a missing or malformed key.
    key = EncryptionKey.from_b64(settings.enc_key_v1)
    _check_settings()

    app = FastAPI(title="authgate", lifespan=lifespan)
    app.state.crypto = CryptoLayer(key, password_rounds=settings.password_hash_rounds)

    # CORS for separate-origin frontend. Off by default.
    if settings.cors_allow_origins or settings.cors_allow_origin_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_origin_regex=settings.cors_allow_origin_regex,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
            allow_credentials=bool(settings.cors_allow_credentials),
        )

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
            return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid request."})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        """Set basic security headers on every response."""

        request.state.csp_nonce = secrets.token_urlsafe(16)
        resp = await call_next(request)

        if not bool(getattr(settings, "security_headers_enabled", True)):
            return resp

        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("Referrer-Policy", "same-origin")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Cache-Control", "no-store")

        # HSTS only when behind HTTPS (or proxy indicates HTTPS) in production.
        xfp = (request.headers.get("x-forwarded-proto") or "").lower()
        is_https = (request.url.scheme == "https") or (xfp == "https")
        if is_https and settings.cookie_secure:
            resp.headers.setdefault("Strict-Transport-Security", "max-age=15552000")

        csp = getattr(settings, "content_security_policy", None)
        if csp:
            resp.headers.setdefault("Content-Security-Policy", str(csp))
        else:
            nonce = getattr(getattr(request, "state", None), "csp_nonce", "")
            resp.headers.setdefault(
                "Content-Security-Policy",
                "default-src 'self'; "
                "script-src 'self' 'nonce-" + str(nonce) + "'; "
                "img-src 'self' data:; "
                "object-src 'none'; base-uri 'self'; frame-ancestors 'none'",
            )

        return resp

    # Routers
    app.include_router(auth.router)
    app.include_router(oauth.router)
    app.include_router(twofa.router)

    @app.get("/healthz")
    def healthz():
        return {"ok": True, "service": "authgate", "ts": datetime.now(timezone.utc).isoformat()}

    return app
