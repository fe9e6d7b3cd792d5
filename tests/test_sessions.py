"""Unit tests for identity/sessions.py -- session token issuance and validation.

Covers:
- issue() then validate() round-trips the account's identity
- Expiry: valid one second before expires_at, invalid at and after it
- Forged, foreign-key, malformed, unsigned, and incomplete tokens are invalid
- refresh_claims() attaches a missing subject and leaves complete claims alone
- encode() of refreshed claims keeps the original expiry
"""

from __future__ import annotations

import base64
import json
from dataclasses import replace

import pytest
from jose import jwt

from identity.errors import InvalidToken
from identity.models import Account, SessionClaims
from identity.sessions import SessionIssuer

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


@pytest.fixture
def account() -> Account:
    return Account(id="acc-123", display_name="Ada Lovelace", email="ada@example.com")


class TestIssueAndValidate:
    def test_round_trip(self, issuer: SessionIssuer, account: Account) -> None:
        claims = issuer.validate(issuer.issue(account))
        assert claims is not None
        assert claims.subject == "acc-123"
        assert claims.email == "ada@example.com"
        assert claims.display_name == "Ada Lovelace"
        assert claims.expires_at - claims.issued_at == 3600

    def test_valid_until_just_before_expiry(self, issuer, clock, account) -> None:
        token = issuer.issue(account)
        clock.advance(3599)
        assert issuer.validate(token) is not None

    def test_invalid_at_expiry(self, issuer, clock, account) -> None:
        token = issuer.issue(account)
        clock.advance(3600)
        assert issuer.validate(token) is None

    def test_invalid_after_expiry(self, issuer, clock, account) -> None:
        token = issuer.issue(account)
        clock.advance(30 * 24 * 3600)
        assert issuer.validate(token) is None

    def test_tampered_signature(self, issuer, account) -> None:
        token = issuer.issue(account)
        head, payload, signature = token.split(".")
        flipped = signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")
        assert issuer.validate(f"{head}.{payload}.{flipped}") is None

    def test_token_from_other_key(self, clock, account) -> None:
        other = SessionIssuer("another-secret-key-that-is-32-chars-long", 3600, clock=clock)
        mine = SessionIssuer(TEST_SECRET, 3600, clock=clock)
        assert mine.validate(other.issue(account)) is None

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c", "....", "eyJhbGciOiJIUzI1NiJ9"])
    def test_malformed_tokens(self, issuer, token) -> None:
        assert issuer.validate(token) is None

    def test_unsigned_token_rejected(self, issuer, clock) -> None:
        """alg=none tokens are refused even with otherwise valid claims."""
        now = int(clock().timestamp())
        payload = {"sub": "acc-123", "email": "ada@example.com", "iat": now, "exp": now + 60}
        header = {"alg": "none", "typ": "JWT"}
        unsigned = f"{_b64(header)}.{_b64(payload)}."
        assert issuer.validate(unsigned) is None

    def test_missing_email_claim(self, issuer, clock) -> None:
        now = int(clock().timestamp())
        token = jwt.encode({"sub": "acc-123", "iat": now, "exp": now + 60}, TEST_SECRET, algorithm="HS256")
        assert issuer.validate(token) is None

    def test_token_without_subject_validates(self, issuer, clock) -> None:
        now = int(clock().timestamp())
        token = jwt.encode(
            {"email": "ada@example.com", "name": "Ada", "iat": now, "exp": now + 60},
            TEST_SECRET,
            algorithm="HS256",
        )
        claims = issuer.validate(token)
        assert claims is not None
        assert claims.subject is None


class TestRefreshClaims:
    def _claims(self, subject: str | None) -> SessionClaims:
        return SessionClaims(
            subject=subject,
            email="ada@example.com",
            display_name="Ada",
            issued_at=1000,
            expires_at=4600,
        )

    def test_complete_claims_returned_unchanged(self, issuer, registry) -> None:
        claims = self._claims("acc-123")
        assert issuer.refresh_claims(claims, registry) is claims

    def test_missing_subject_attached_from_registry(self, issuer, registry) -> None:
        account = registry.create("Ada", "ADA@example.com", None)
        refreshed = issuer.refresh_claims(self._claims(None), registry)
        assert refreshed.subject == account.id
        assert refreshed.expires_at == 4600

    def test_missing_subject_unknown_email(self, issuer, registry) -> None:
        with pytest.raises(InvalidToken):
            issuer.refresh_claims(self._claims(None), registry)

    def test_reencoded_claims_keep_expiry(self, issuer, registry, account) -> None:
        original = issuer.validate(issuer.issue(account))
        reissued = issuer.validate(issuer.encode(replace(original, display_name="Renamed")))
        assert reissued.expires_at == original.expires_at
        assert reissued.display_name == "Renamed"
