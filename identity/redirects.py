"""
identity/redirects.py -- Confine post-login redirects to the application's origin.

The callback URL arrives from the query string, so an attacker controls it.
Accepting it verbatim would turn the login page into an open redirect:
  /login?callbackUrl=https://attacker.example/phish

Rules:
  "/path"                 -> base_url + "/path"
  absolute, same origin   -> returned unchanged
  anything else           -> base_url

"Same origin" compares scheme, host, and effective port, with default ports
(80 for http, 443 for https) filled in, so "https://app.example:443/x" matches
"https://app.example".
"""

from __future__ import annotations

from urllib.parse import urlsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _origin(url: str) -> tuple[str, str, int | None] | None:
    """Return (scheme, host, port) for an absolute http(s) URL, else None."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        return None
    return scheme, parts.hostname.lower(), port or _DEFAULT_PORTS[scheme]


def sanitize_redirect(requested_url: str | None, base_url: str) -> str:
    """Return a redirect target that is guaranteed to stay on base_url's origin."""
    base = base_url.rstrip("/")
    if not requested_url:
        return base
    if requested_url.startswith("/"):
        return f"{base}{requested_url}"

    requested_origin = _origin(requested_url)
    if requested_origin is not None and requested_origin == _origin(base):
        return requested_url
    return base
