"""
api/routes/v1/auth.py -- Registration, sign-in, and session endpoints.

Routes:
  POST /api/v1/auth/register             -- create a password account; 201
  POST /api/v1/auth/login                -- password login; sets session cookie
  POST /api/v1/auth/logout               -- clears cookie; 200
  GET  /api/v1/auth/session              -- current session claims (requires auth)
  PUT  /api/v1/auth/password             -- change password (requires auth)
  GET  /api/v1/auth/providers            -- list sign-in methods (public)
  GET  /api/v1/auth/oauth/{provider}     -- redirect to the OAuth provider
  GET  /api/v1/auth/callback/{provider}  -- OAuth callback; sets session cookie

Errors are raised as identity errors (identity/errors.py) and rendered by the
exception handlers in api/main.py. Handlers never build error bodies.

Security:
  Password hashing and verification run on the worker thread pool via
  run_in_threadpool so a bcrypt round never stalls the event loop.
  Login failures return one generic error whether the email is unknown or the
  password is wrong.
  Cache-Control: no-store on every response that carries a token.
  Callback URLs always pass through sanitize_redirect().
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse

from api.models import (
    AccountResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordChangeRequest,
    ProviderInfo,
    RegisterRequest,
    SessionResponse,
)
from core.config import get_settings
from identity.dependencies import get_current_session
from identity.errors import IdentityError
from identity.models import CredentialsLogin, SessionClaims
from identity.oauth import get_enabled_providers, get_oauth_login
from identity.redirects import sanitize_redirect
from identity.registry import AccountRegistry
from identity.service import change_password, register_account, sign_in
from identity.sessions import SessionIssuer, clear_session_cookie, set_session_cookie

logger = logging.getLogger("signet.api")

# Where a sign-in lands when the client did not ask for anywhere in particular.
_DEFAULT_CALLBACK = "/profile"
_SIGNIN_ERROR_PATH = "/login?error=oauth_failed"

router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AccountResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> AccountResponse:
    """Create a password account. 409 if the email is already registered."""
    registry: AccountRegistry = request.app.state.registry
    account = await run_in_threadpool(register_account, registry, body.display_name, body.email, body.password)
    return AccountResponse.from_account(account)


@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    The response also carries the token for non-browser clients, and
    redirect_to: the requested callback_url confined to this application's
    origin (default /profile).
    """
    registry: AccountRegistry = request.app.state.registry
    issuer: SessionIssuer = request.app.state.issuer
    settings = get_settings()

    account, token = await run_in_threadpool(sign_in, registry, issuer, CredentialsLogin(body.email, body.password))

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            session_token=token,
            expires_in=issuer.ttl_seconds,
            redirect_to=sanitize_redirect(body.callback_url or _DEFAULT_CALLBACK, settings.base_url),
            account=AccountResponse.from_account(account),
        ).model_dump(),
    )
    set_session_cookie(resp, token, issuer.ttl_seconds)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the session cookie. The token itself stays valid until it expires."""
    resp = JSONResponse(content=MessageResponse(message="Signed out.").model_dump())
    clear_session_cookie(resp)
    return resp


@router.get("/auth/providers", response_model=list[ProviderInfo])
async def list_providers() -> list[ProviderInfo]:
    """Return every sign-in method: credentials first, then configured OAuth providers."""
    providers = [ProviderInfo(name="credentials", label="Email and password", type="credentials")]
    providers.extend(ProviderInfo(type="oauth", **p) for p in get_enabled_providers())
    return providers


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/session", response_model=SessionResponse)
async def read_session(session: SessionClaims = Depends(get_current_session)) -> SessionResponse:
    """Return the verified claims of the presented session token."""
    return SessionResponse.from_claims(session)


@router.put("/auth/password", response_model=MessageResponse)
async def update_password(
    request: Request,
    body: PasswordChangeRequest,
    session: SessionClaims = Depends(get_current_session),
) -> MessageResponse:
    """Change the signed-in account's password. Requires the current password.

    Existing sessions stay valid; tokens carry no password-derived state.
    """
    registry: AccountRegistry = request.app.state.registry
    await run_in_threadpool(change_password, registry, session.subject, body.current_password, body.new_password)
    return MessageResponse(message="Password updated.")


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


def _signin_error_redirect() -> RedirectResponse:
    return RedirectResponse(f"{get_settings().base_url}{_SIGNIN_ERROR_PATH}", status_code=302)


@router.get("/auth/oauth/{provider}")
async def oauth_redirect(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page.

    The provider name is checked against the enabled list before anything
    else. The sanitized ?callbackUrl= is kept in the Starlette session until
    the callback arrives.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return _signin_error_redirect()

    settings = get_settings()
    requested = request.query_params.get("callbackUrl") or _DEFAULT_CALLBACK
    request.session["callback_url"] = sanitize_redirect(requested, settings.base_url)

    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/callback/{provider}", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the provider callback and issue a session cookie.

    Flow:
      1. Exchange the authorization code (authlib verifies state via the session).
      2. Extract the verified email and display name -- ValueError if unverified.
      3. Reconcile to a local account (created on first sight) and issue a token.
         Any failure up to here redirects to the sign-in error page.
      4. Redirect to the callback URL stored by oauth_redirect.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return _signin_error_redirect()

    registry: AccountRegistry = request.app.state.registry
    issuer: SessionIssuer = request.app.state.issuer
    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return _signin_error_redirect()

    try:
        attempt = await get_oauth_login(client, provider, token)
    except ValueError:
        logger.warning("OAuth login rejected: unverified or missing email from %r", provider)
        return _signin_error_redirect()

    try:
        account, session_token = await run_in_threadpool(sign_in, registry, issuer, attempt)
    except IdentityError:
        logger.warning("OAuth login rejected: %r asserted an unusable email", provider)
        return _signin_error_redirect()

    logger.info("OAuth sign-in via %s for account %s", provider, account.id)

    default = sanitize_redirect(_DEFAULT_CALLBACK, get_settings().base_url)
    resp = RedirectResponse(request.session.pop("callback_url", default), status_code=302)
    set_session_cookie(resp, session_token, issuer.ttl_seconds)
    resp.headers["Cache-Control"] = "no-store"
    return resp
