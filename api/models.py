"""
API request and response models for Signet REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in identity/models.py,
which own the internal domain representation. Route handlers map between the
two.

Shape validation (lengths, email syntax, matching confirmation fields) lives
here. The identity core only re-checks what it needs for its own invariants.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from identity.models import Account, SessionClaims

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_PASSWORD_MIN = 8
_PASSWORD_MAX = 128


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    display_name: str = Field(min_length=2, max_length=50)
    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    confirm_password: str

    @field_validator("display_name", "email", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, value: str, info: ValidationInfo) -> str:
        # password is absent from info.data when it already failed validation
        if "password" in info.data and value != info.data["password"]:
            raise ValueError("Passwords do not match.")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    callback_url is where the client wants to land afterwards. It is passed
    through the redirect sanitizer before being echoed back.
    """

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    callback_url: Optional[str] = Field(default=None, max_length=2048)


class PasswordChangeRequest(BaseModel):
    """Request body for PUT /api/v1/auth/password."""

    current_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    new_password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    confirm_password: str

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, value: str, info: ValidationInfo) -> str:
        if "new_password" in info.data and value != info.data["new_password"]:
            raise ValueError("Passwords do not match.")
        return value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    email: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(id=account.id, display_name=account.display_name, email=account.email)


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login. The token is also set as a cookie."""

    model_config = ConfigDict(frozen=True)

    session_token: str
    token_type: str = "bearer"
    expires_in: int
    redirect_to: str
    account: AccountResponse


class SessionResponse(BaseModel):
    """Response for GET /api/v1/auth/session -- the verified session claims."""

    model_config = ConfigDict(frozen=True)

    subject: str
    email: str
    display_name: str
    issued_at: int
    expires_at: int
    expires: str  # ISO 8601 form of expires_at

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> "SessionResponse":
        return cls(
            subject=claims.subject or "",
            email=claims.email,
            display_name=claims.display_name,
            issued_at=claims.issued_at,
            expires_at=claims.expires_at,
            expires=datetime.fromtimestamp(claims.expires_at, tz=timezone.utc).isoformat(),
        )


class ProviderInfo(BaseModel):
    """One sign-in method offered by GET /api/v1/auth/providers."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    type: str  # "credentials" or "oauth"


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class FieldError(BaseModel):
    """A single field-level validation failure."""

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Structured error detail carried inside ErrorResponse."""

    code: str
    message: str
    detail: Optional[str] = None
    details: Optional[list[FieldError]] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope for every non-2xx response."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
