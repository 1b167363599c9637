"""
api/main.py -- FastAPI application entry point for the Eat Fast auth service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the frontend origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the account store and secret store, seeds the role table,
builds the flows, and closes both stores on shutdown. Every collaborator is
kept on app.state so route handlers and the access guard share one instance,
and tests can swap any of them out.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.accounts import router as accounts_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.oauth import router as oauth_router
from auth.errors import AuthError
from auth.flows import OAuthFlow, PasswordAuthFlow
from auth.notify import Notifier
from auth.oauth import GoogleIdentityProvider
from auth.seed import seed_admin, seed_roles
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from cache.store import MemorySecretStore, SecretStore, create_secret_store
from core.config import Settings, get_settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("eatfast.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def init_services(
    app: FastAPI,
    settings: Settings,
    *,
    account_store: AccountStore | None = None,
    secret_store: SecretStore | None = None,
    notifier: Notifier | None = None,
    identity_provider: GoogleIdentityProvider | None = None,
) -> None:
    """Build the flows and attach them (and their collaborators) to app.state.

    Any collaborator passed in is used as-is; the rest are built from
    settings. Roles (and the bootstrap admin, when configured) are seeded
    idempotently.
    """
    store = account_store or AccountStore(settings.database_url)
    secrets_ = secret_store or create_secret_store(settings.secret_store_url)
    issuer = TokenIssuer.from_settings(settings)
    notifier = notifier or Notifier(settings)
    provider = identity_provider or GoogleIdentityProvider.from_settings(settings)

    seed_roles(store)
    if settings.admin_email and settings.admin_password:
        seed_admin(store, settings.admin_email, settings.admin_password)

    app.state.settings = settings
    app.state.account_store = store
    app.state.secret_store = secrets_
    app.state.token_issuer = issuer
    app.state.notifier = notifier
    app.state.identity_provider = provider
    app.state.password_flow = PasswordAuthFlow(store, secrets_, issuer, notifier, settings)
    app.state.oauth_flow = OAuthFlow(store, secrets_, issuer, provider, settings)


async def _purge_loop(store: MemorySecretStore) -> None:
    """Drop expired in-memory secrets every 5 minutes.

    Only started for the memory backend; Redis expires keys itself.
    CancelledError from task.cancel() unwinds the loop on shutdown.
    """
    while True:
        await asyncio.sleep(5 * 60)
        store.purge_expired()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores and build flows on startup; close them on shutdown."""
    settings = get_settings()
    logger.info("Eat Fast auth API starting up")
    init_services(app, settings)
    purge_task = None
    if isinstance(app.state.secret_store, MemorySecretStore):
        purge_task = asyncio.create_task(_purge_loop(app.state.secret_store))
    logger.info(
        "Auth initialized (google_oauth=%s, smtp=%s)",
        app.state.identity_provider.enabled,
        bool(settings.smtp_host),
    )

    yield

    if purge_task is not None:
        purge_task.cancel()
    await app.state.secret_store.close()
    app.state.account_store.close()
    logger.info("Eat Fast auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="Eat Fast Auth API",
    description="Account registration, email two-factor login, Google sign-in and role-based access.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,  # refresh cookie
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(oauth_router, prefix="/api/v1", tags=["Google OAuth"])
app.include_router(accounts_router, prefix="/api/v1", tags=["Accounts"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the {"error": ..., "code": ...} envelope so clients
# can branch on code without inspecting the status first.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a Retry-After header when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error="Too many requests, please try again later.",
            code="RATE_LIMITED",
            details=str(exc.detail),
        ).model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 listing each failed field and its message."""
    details = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error="Validation failed", code="VALIDATION_FAILED", details=details).model_dump(
            exclude_none=True
        ),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail), code=f"HTTP_{exc.status_code}").model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only. The exception text is echoed back in
    debug mode to ease local development.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    body = ErrorResponse(error="Internal server error", code="INTERNAL_ERROR")
    if get_settings().debug:
        body.details = str(exc)
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit -- load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> JSONResponse:
    """Return liveness plus a reachability check of each backing store.

    Responds 503 with status "degraded" when either store is down.
    """
    components = {
        "app": "ok",
        "database": "ok" if request.app.state.account_store.ping() else "error",
        "secret_store": "ok" if await request.app.state.secret_store.ping() else "error",
    }
    healthy = all(v == "ok" for v in components.values())
    body = HealthResponse(status="healthy" if healthy else "degraded", version=VERSION, components=components)
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())
