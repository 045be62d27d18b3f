"""Authentication endpoints.

Registration and TOTP enrollment, the two-step login, temporary codes,
trusted devices, session status and password change.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Path, Request, Response

from neosynth.api.dependencies import (
    get_engine,
    require_ownership,
    require_session,
    totp_setup_throttle,
    totp_verify_throttle,
)
from neosynth.api.middleware.auth import Principal, client_ip  # noqa: TC001
from neosynth.api.middleware.cookies import clear_session_cookie, set_session_cookie
from neosynth.api.v1.schemas import (
    DeviceResponse,
    LoginStep1Request,
    LoginStep1Response,
    LoginStep2Request,
    LoginStep2Response,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    SessionInfoResponse,
    SessionStatusResponse,
    SetupTotpRequest,
    SetupTotpResponse,
    TempCodeRequest,
    TempCodeResponse,
    UserSummary,
    VerifyTotpRequest,
)
from neosynth.engine.client import AuthEngine  # noqa: TC001
from neosynth.engine.models.base import utcnow
from neosynth.engine.services.device_service import parse_device_info
from neosynth.engine.services.login_service import LoginState
from neosynth.engine.services.second_factor_service import SecondFactor
from neosynth.engine.services.session_service import DeviceInfo
from neosynth.engine.services.user_service import UserService
from neosynth.errors.definitions import (
    ErrDeviceNotTrusted,
    ErrMissingFields,
    ErrUnauthenticated,
    ErrUserNotFound,
)

router = APIRouter(prefix="/auth", tags=["auth"])

_EXPIRING_SOON_MS = 60 * 60 * 1000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _device_info(request: Request, label: str | None = None) -> DeviceInfo:
    user_agent = request.headers.get("user-agent", "")
    return DeviceInfo(
        user_agent=user_agent,
        ip=client_ip(request),
        platform=label or parse_device_info(user_agent),
    )


def _user_summary(user: Any) -> UserSummary:
    return UserSummary(user_id=user.user_id, username=user.username, is_admin=user.is_admin)


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------


@router.get("/first-time-setup")
async def first_time_setup(
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Report whether the instance still needs its first user."""
    return await engine.users.first_time_setup_status()


@router.post("/setup-totp", dependencies=[Depends(totp_setup_throttle)])
async def setup_totp(
    body: SetupTotpRequest,
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Generate a TOTP secret for a username that is not yet taken."""
    result = await engine.users.setup_totp(body.username)
    return SetupTotpResponse(
        secret=result["secret"],
        otpauth_url=result["otpauthUrl"],
        qr_code_url=result["qrCodeUrl"],
    ).dump()


@router.post("/verify-totp", dependencies=[Depends(totp_verify_throttle)])
async def verify_totp(body: VerifyTotpRequest) -> dict:
    """Check a code against a freshly generated secret before registering."""
    UserService.verify_totp_code(body.secret, body.token)
    return {"verified": True}


@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Create a user, trust the registering device and start a session."""
    label = body.device_info or parse_device_info(request.headers.get("user-agent", ""))
    registration = await engine.users.register(
        username=body.username,
        password=body.password,
        totp_secret=body.totp_secret,
        backup_codes=body.backup_codes,
        device_fingerprint=body.device_fingerprint,
        device_label=label,
        device=_device_info(request, label),
    )
    session = registration.session
    set_session_cookie(
        response, session.token, session.expires_at, auth=engine.config.auth, secret=engine.cookie_secret
    )
    return RegisterResponse(
        user_id=registration.user.user_id,
        device_token=registration.device_token,
        session_token=session.token,
        expires_at=session.expires_at,
    ).dump()


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@router.post("/auth-step1")
async def login_step1(
    body: LoginStep1Request,
    request: Request,
    response: Response,
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Verify the password; trusted devices finish here, others get a step token."""
    result = await engine.logins.step1(
        body.username, body.password, body.device_fingerprint, device=_device_info(request)
    )
    if result.state == LoginState.COMPLETED and result.session is not None:
        set_session_cookie(
            response,
            result.session.token,
            result.session.expires_at,
            auth=engine.config.auth,
            secret=engine.cookie_secret,
        )
        return LoginStep1Response(
            message="Login successful",
            requires_step2=False,
            user=_user_summary(result.user),
        ).dump()

    return LoginStep1Response(
        message="Password verified, 2FA required",
        requires_step2=True,
        step_token=result.step_token,
        available_methods=result.available_methods,
        expires_in=result.expires_in,
    ).dump()


@router.post("/auth-step2")
async def login_step2(
    body: LoginStep2Request,
    request: Request,
    response: Response,
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Verify one second factor and complete the login."""
    factor = SecondFactor(
        totp_token=body.totp_token, backup_code=body.backup_code, temp_code=body.temp_code
    )
    result = await engine.logins.step2(body.step_token, factor, device=_device_info(request))
    set_session_cookie(
        response,
        result.session.token,
        result.session.expires_at,
        auth=engine.config.auth,
        secret=engine.cookie_secret,
    )
    return LoginStep2Response(
        auth_method=str(result.auth_method),
        user=_user_summary(result.user),
        device_token=result.device_token,
    ).dump()


# ---------------------------------------------------------------------------
# Temporary codes and devices
# ---------------------------------------------------------------------------


@router.post("/generate-temp-code")
async def generate_temp_code(
    body: TempCodeRequest,
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Mint a short-lived code from an already trusted device."""
    if not body.user_id or not body.device_token:
        raise ErrMissingFields
    if await engine.users.get_user(body.user_id) is None:
        raise ErrUserNotFound
    device = await engine.devices.find_by_token(body.user_id, body.device_token)
    if device is None:
        raise ErrDeviceNotTrusted
    await engine.devices.touch(device.id)
    code, expires_at = await engine.second_factor.issue_temp_code(body.user_id)
    return TempCodeResponse(temp_code=code, expires_at=expires_at).dump()


@router.get("/devices/{userId}")
async def list_devices(
    user_id: Annotated[str, Path(alias="userId")],
    principal: Annotated[Principal, Depends(require_ownership("userId"))],
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """List a user's trusted devices (owner or admin)."""
    if await engine.users.get_user(user_id) is None:
        raise ErrUserNotFound
    devices = await engine.devices.list_devices(user_id)
    return {
        "devices": [
            DeviceResponse(
                fingerprint=d.device_fingerprint,
                name=d.name,
                device_info=d.device_info,
                last_used=d.last_used,
                created=d.created_at,
            ).dump()
            for d in devices
        ]
    }


@router.delete("/devices/{userId}/{fingerprint}")
async def remove_device(
    user_id: Annotated[str, Path(alias="userId")],
    fingerprint: str,
    principal: Annotated[Principal, Depends(require_ownership("userId"))],
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Revoke one trusted device (owner or admin)."""
    if await engine.users.get_user(user_id) is None:
        raise ErrUserNotFound
    await engine.devices.revoke(user_id, fingerprint)
    return {"message": "Device removed successfully"}


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/logout")
async def logout(
    response: Response,
    principal: Annotated[Principal, Depends(require_session)],
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Revoke the current session and clear its cookie."""
    if principal.session_token:
        await engine.sessions.revoke(principal.session_token)
    clear_session_cookie(response, auth=engine.config.auth)
    return {"message": "Logout successful"}


@router.get("/session-status")
async def session_status(
    principal: Annotated[Principal, Depends(require_session)],
) -> dict:
    """Validate (and refresh) the caller's session."""
    return SessionStatusResponse(user_id=principal.id, is_admin=principal.is_admin).dump()


@router.get("/session-info")
async def session_info(
    principal: Annotated[Principal, Depends(require_session)],
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Expiry details for session warnings in the client."""
    session = await engine.sessions.find(principal.session_token or "")
    if session is None:
        raise ErrUnauthenticated
    remaining_ms = int((session.expires_at - utcnow()).total_seconds() * 1000)
    return SessionInfoResponse(
        expires_at=session.expires_at,
        time_remaining=remaining_ms,
        hours_remaining=remaining_ms // 3_600_000,
        minutes_remaining=(remaining_ms % 3_600_000) // 60_000,
        is_expiring_soon=remaining_ms < _EXPIRING_SOON_MS,
        device_info=session.device_info,
    ).dump()


@router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    principal: Annotated[Principal, Depends(require_session)],
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Change the password. Only a browser session may do this."""
    await engine.users.change_password(principal.id, body.current_password, body.new_password)
    return {"message": "Password reset successful"}
