"""
api/main.py -- FastAPI application entry point for Signet.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- credentialed CORS for the application's own origin
  3. SessionMiddleware     -- signed cookie session; authlib keeps OAuth state here

Lifespan builds the account registry and the session issuer on startup and
closes the registry on shutdown. Both live on app.state so tests can swap in
their own.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from api.models import ErrorDetail, ErrorResponse, FieldError, HealthResponse
from api.routes.v1.auth import router as auth_router
from core.config import get_settings
from identity.errors import (
    AlreadyExists,
    IdentityError,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    ValidationError,
)
from identity.oauth import oauth as oauth_client
from identity.registry import build_registry
from identity.sessions import get_session_issuer

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("signet.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The issuer is built once here and never replaced, so the
    signing key is fixed for the life of the process.
    """
    logger.info("Signet API starting up")
    app.state.registry = build_registry(_settings)
    logger.info("Account registry initialized (backend=%s)", _settings.registry_backend)
    app.state.issuer = get_session_issuer()
    app.state.oauth = oauth_client

    yield

    app.state.registry.close()
    logger.info("Signet API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Signet API",
    description="Password and OAuth sign-in with stateless signed sessions.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the last one added is the
# outermost. Register innermost first: Session -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

# authlib stores the OAuth state value here between the authorization redirect
# and the callback; the callback URL chosen at sign-in start rides along.
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key, https_only=_settings.secure_cookies)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.base_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives per-request
# latency.
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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_IDENTITY_STATUS: dict[type[IdentityError], int] = {
    ValidationError: 400,
    InvalidCredentials: 401,
    InvalidToken: 401,
    NotFound: 404,
    AlreadyExists: 409,
}


@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Map identity-core failures to HTTP.

    InvalidCredentials deliberately carries the same message for an unknown
    email and a wrong password. No identity error response is cacheable.
    """
    status = _IDENTITY_STATUS.get(type(exc), 400)
    details = None
    if isinstance(exc, ValidationError):
        details = [FieldError(**e) for e in exc.errors]
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message, details=details)).model_dump(
            exclude_none=True
        ),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


def _field_errors(exc: RequestValidationError) -> list[FieldError]:
    """Flatten pydantic errors to [{field, message}], dropping the "body"/"query" prefix."""
    fields: list[FieldError] = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        field = ".".join(loc[1:]) if len(loc) > 1 else ".".join(loc)
        message = str(err.get("msg", "Invalid value."))
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        fields.append(FieldError(field=field, message=message))
    return fields


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a per-field error list when the request body fails validation."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Validation failed.",
                details=_field_errors(exc),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 routes, 405s)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors (storage I/O and the like).

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and whether the account registry answers a read."""
    database = "ok"
    try:
        await run_in_threadpool(request.app.state.registry.find_by_email, "health-probe@signet.invalid")
    except Exception:
        logger.exception("Health check: account registry read failed")
        database = "error"
    return HealthResponse(
        status="healthy",
        version=_VERSION,
        components={"app": "ok", "database": database},
    )
