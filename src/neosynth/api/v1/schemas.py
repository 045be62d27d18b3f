"""API request/response Pydantic schemas.

These are the *API-layer* schemas: thin wrappers that define the HTTP
contract in camelCase. They deliberately do NOT inherit from SQLAlchemy
models; the endpoint code maps between ORM objects and these schemas.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys; snake_case is accepted too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self, *, exclude_none: bool = True) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)


class ErrorResponse(BaseModel):
    """Standard error body."""

    code: str
    message: str


# ---------------------------------------------------------------------------
# Users and enrollment
# ---------------------------------------------------------------------------


class UserSummary(CamelModel):
    user_id: str
    username: str
    is_admin: bool


class SetupTotpRequest(CamelModel):
    username: str = ""


class SetupTotpResponse(CamelModel):
    secret: str
    otpauth_url: str
    qr_code_url: str


class VerifyTotpRequest(CamelModel):
    secret: str = ""
    token: str = ""


class RegisterRequest(CamelModel):
    """POST /api/auth/register."""

    username: str = ""
    password: str = ""
    totp_secret: str = ""
    backup_codes: list[str] = Field(default_factory=list)
    device_fingerprint: str = ""
    device_info: str | None = None


class RegisterResponse(CamelModel):
    message: str = "User registered successfully"
    user_id: str
    device_token: str
    session_token: str
    expires_at: datetime


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class LoginStep1Request(CamelModel):
    username: str = ""
    password: str = ""
    device_fingerprint: str = ""


class LoginStep1Response(CamelModel):
    """Step-1 result. ``stepToken`` and ``availableMethods`` only when step 2 is required."""

    success: bool = True
    message: str
    requires_step2: bool
    step_token: str | None = None
    available_methods: list[str] | None = None
    expires_in: int | None = None
    user: UserSummary | None = None


class LoginStep2Request(CamelModel):
    step_token: str = ""
    totp_token: str | None = None
    backup_code: str | None = None
    temp_code: str | None = None


class LoginStep2Response(CamelModel):
    success: bool = True
    message: str = "Login successful"
    auth_method: str
    user: UserSummary
    device_token: str | None = None


# ---------------------------------------------------------------------------
# Devices and temporary codes
# ---------------------------------------------------------------------------


class TempCodeRequest(CamelModel):
    user_id: str = ""
    device_token: str = ""


class TempCodeResponse(CamelModel):
    temp_code: str
    expires_at: datetime


class DeviceResponse(CamelModel):
    fingerprint: str
    name: str
    device_info: str
    last_used: datetime | None = None
    created: datetime | None = None


# ---------------------------------------------------------------------------
# Sessions and password
# ---------------------------------------------------------------------------


class SessionStatusResponse(CamelModel):
    status: str = "valid"
    user_id: str
    is_admin: bool


class SessionInfoResponse(CamelModel):
    expires_at: datetime
    time_remaining: int  # milliseconds
    hours_remaining: int
    minutes_remaining: int
    is_expiring_soon: bool
    device_info: dict[str, str]


class ResetPasswordRequest(CamelModel):
    current_password: str = ""
    new_password: str = ""


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class RateLimitSchema(CamelModel):
    requests_per_minute: int | None = None
    requests_per_hour: int | None = None


class ApiKeyCreateRequest(CamelModel):
    """POST /api/keys. ``expiresIn`` is ``30d``, ``90d``, ``1y`` or null."""

    name: str = ""
    role: str = "user"
    expires_in: str | None = None
    ip_whitelist: list[str] = Field(default_factory=list)


class ApiKeyUpdateRequest(CamelModel):
    name: str | None = None
    rate_limit: RateLimitSchema | None = None
    ip_whitelist: list[str] | None = None


class ApiKeyResponse(CamelModel):
    """Serialized key for listings. Never carries the hash."""

    key_id: str
    name: str
    role: str
    permissions: list[str]
    prefix: str
    is_active: bool
    last_used: datetime | None = None
    usage_count: int = 0
    rate_limit: RateLimitSchema
    ip_whitelist: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None
    created_at: datetime | None = None
    user_id: str | None = None
    created_by: str | None = None


class ApiKeyCreateResponse(ApiKeyResponse):
    """Creation response; ``apiKey`` is the only time the plaintext is shown."""

    api_key: str
    warning: str = "Store this API key securely. It will not be shown again."


class PaginationSchema(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class ApiKeyListAllResponse(CamelModel):
    api_keys: list[ApiKeyResponse]
    pagination: PaginationSchema
