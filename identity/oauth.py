"""
identity/oauth.py -- Authlib OAuth/OIDC provider configuration.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered -- GET /auth/providers lists exactly those.

Security notes:
  Email verification is mandatory. get_oauth_login() raises ValueError if the
  provider does not confirm the email is verified. The reconciler trusts the
  asserted email as proof of identity and will hand out the matching local
  account, so an unverified address (which anyone can add to a GitHub
  profile) must never reach it.

  The OAuth state parameter (CSRF protection) is handled by authlib via
  Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Supported providers:
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from core.config import get_settings
from identity.models import OAuthLogin

logger = logging.getLogger("signet.identity.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# GitHub -- static endpoints (no OIDC discovery document)
if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name="github",
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")

# Google -- OIDC discovery. Always shows the consent screen.
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
        authorize_params={"prompt": "consent", "access_type": "offline"},
    )
    logger.info("Google OAuth provider registered")


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every configured OAuth provider."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


# ---------------------------------------------------------------------------
# Assertion extraction -- provider-specific normalization
# ---------------------------------------------------------------------------


async def get_oauth_login(client, provider: str, token: dict) -> OAuthLogin:
    """Build an OAuthLogin (provider, verified email, display name) from a token response.

    Args:
        client:   The authlib OAuth client for this provider.
        provider: "github" or "google".
        token:    The token dict returned by authlib after code exchange.

    Raises:
        ValueError: If a verified email cannot be confirmed, or the provider
                    is unknown.
    """
    if provider == "github":
        return await _get_github_login(client, token)
    elif provider == "google":
        return _get_google_login(token)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_login(client, token: dict) -> OAuthLogin:
    """GitHub does not put the email in the token. Two API calls are required:

      1. GET /user -- display name (falls back to the login handle).
      2. GET /user/emails -- the primary verified email.

    Only the entry with both primary=true and verified=true is accepted.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()
    display_name = profile.get("name") or profile.get("login") or ""

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    if not email:
        raise ValueError(
            "GitHub OAuth: no primary verified email found. "
            "The user must verify their email address on GitHub before logging in."
        )

    return OAuthLogin(provider="github", email=email, display_name=display_name)


def _get_google_login(token: dict) -> OAuthLogin:
    """Google returns an id_token whose userinfo carries email, email_verified, and name.

    A missing email_verified claim is treated as unverified.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            "google OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    if not email:
        raise ValueError("google OAuth: missing email claim in userinfo")

    return OAuthLogin(provider="google", email=email, display_name=userinfo.get("name") or "")
