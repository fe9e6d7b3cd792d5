"""Unit tests for identity/oauth.py -- provider response normalization.

The authlib client is replaced by a small fake so no network is touched.
Coroutines are driven with asyncio.run().

Covers:
- GitHub: primary verified email + display name (falls back to login handle)
- GitHub: no primary verified email -> ValueError
- Google: verified userinfo -> OAuthLogin; unverified / missing -> ValueError
- Unknown provider -> ValueError
"""

from __future__ import annotations

import asyncio

import pytest

from identity.models import OAuthLogin
from identity.oauth import get_oauth_login


class FakeResponse:
    def __init__(self, payload) -> None:
        self._payload = payload

    def raise_for_status(self) -> None:
        pass

    def json(self):
        return self._payload


class FakeGitHubClient:
    """Answers GET user and GET user/emails the way the GitHub REST API does."""

    def __init__(self, profile: dict, emails: list[dict]) -> None:
        self.profile = profile
        self.emails = emails

    async def get(self, path: str, token=None) -> FakeResponse:
        return FakeResponse(self.profile if path == "user" else self.emails)


class TestGitHub:
    def test_primary_verified_email(self) -> None:
        client = FakeGitHubClient(
            {"id": 1, "login": "octocat", "name": "The Octocat"},
            [
                {"email": "old@example.com", "primary": False, "verified": True},
                {"email": "Octo@Example.com", "primary": True, "verified": True},
            ],
        )
        login = asyncio.run(get_oauth_login(client, "github", {"access_token": "t"}))
        assert login == OAuthLogin(provider="github", email="Octo@Example.com", display_name="The Octocat")

    def test_name_falls_back_to_login(self) -> None:
        client = FakeGitHubClient(
            {"id": 1, "login": "octocat", "name": None},
            [{"email": "octo@example.com", "primary": True, "verified": True}],
        )
        login = asyncio.run(get_oauth_login(client, "github", {}))
        assert login.display_name == "octocat"

    def test_unverified_primary_rejected(self) -> None:
        client = FakeGitHubClient(
            {"id": 1, "login": "octocat"},
            [{"email": "victim@example.com", "primary": True, "verified": False}],
        )
        with pytest.raises(ValueError):
            asyncio.run(get_oauth_login(client, "github", {}))


class TestGoogle:
    def test_verified_userinfo(self) -> None:
        token = {"userinfo": {"email": "g@example.com", "email_verified": True, "name": "Gee", "sub": "42"}}
        login = asyncio.run(get_oauth_login(None, "google", token))
        assert login == OAuthLogin(provider="google", email="g@example.com", display_name="Gee")

    @pytest.mark.parametrize(
        "token",
        [
            {},
            {"userinfo": {"email": "g@example.com", "sub": "42"}},
            {"userinfo": {"email": "g@example.com", "email_verified": False}},
            {"userinfo": {"email_verified": True, "name": "No Email"}},
        ],
    )
    def test_rejected_userinfo(self, token: dict) -> None:
        with pytest.raises(ValueError):
            asyncio.run(get_oauth_login(None, "google", token))


def test_unknown_provider() -> None:
    with pytest.raises(ValueError):
        asyncio.run(get_oauth_login(None, "myspace", {}))
