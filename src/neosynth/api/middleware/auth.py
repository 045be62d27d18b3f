"""Request gate: resolve a session or an API key into one principal.

Resolution happens once per request, before the handler runs:

1. A session token is taken from the signed cookie, the unsigned cookie,
   ``x-session-token`` or an ``Authorization: Bearer`` header, in that order.
2. If it names a live session, the principal is that session's user.
3. Otherwise an API key is read from ``x-api-key`` (never a query
   parameter), checked against its IP allow-list and rate limits.
4. Anything else is a uniform 401.

A principal found here is final for the request. A downstream role check
that fails is a 403; it never falls back to a different credential.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import unquote

from neosynth.api.middleware.cookies import SIGNED_PREFIX, unsign_value
from neosynth.engine.permissions import Role, default_permissions, permission_name
from neosynth.engine.services.api_key_service import ip_allowed
from neosynth.errors.definitions import ErrAccessDenied, ErrAuthInternal, ErrUnauthenticated
from neosynth.errors.neosynth_errors import NeoSynthError, RateLimitedError

if TYPE_CHECKING:
    from starlette.requests import Request

    from neosynth.engine.client import AuthEngine
    from neosynth.engine.models.api_key import ApiKey
    from neosynth.engine.models.session import UserSession

logger = logging.getLogger(__name__)
auth_debug = logging.getLogger("neosynth.auth")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

AUTH_HEADER_SESSION = "x-session-token"
AUTH_HEADER_API_KEY = "x-api-key"
AUTH_HEADER_AUTHORIZATION = "authorization"
BEARER_PREFIX = "Bearer "


class AuthKind(enum.StrEnum):
    """How the principal authenticated."""

    SESSION = "session"
    API_KEY = "apiKey"


# ---------------------------------------------------------------------------
# Principal
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, normalized across credential kinds."""

    id: str
    role: Role
    auth_kind: AuthKind
    permissions: frozenset[str] = field(default_factory=frozenset)
    session_token: str | None = None
    api_key_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def owns(self, user_id: str | None) -> bool:
        """Admins own everything; everyone else only their own user id."""
        return self.is_admin or (user_id is not None and self.id == user_id)

    def can_access(self, resource: str, action: str, target_user_id: str | None = None) -> bool:
        if not self.has_permission(permission_name(resource, action)):
            return False
        if self.is_admin:
            return True
        if self.role == Role.USER and target_user_id and target_user_id != self.id:
            return False
        return True

    @classmethod
    def from_session(cls, session: UserSession) -> Principal:
        role = Role.ADMIN if session.is_admin else Role.USER
        return cls(
            id=session.user_id,
            role=role,
            auth_kind=AuthKind.SESSION,
            permissions=frozenset(default_permissions(role)),
            session_token=session.token,
        )

    @classmethod
    def from_api_key(cls, record: ApiKey) -> Principal:
        return cls(
            id=record.user_id,
            role=Role(record.role),
            auth_kind=AuthKind.API_KEY,
            permissions=frozenset(record.permissions or []),
            api_key_id=record.key_id,
        )


# ---------------------------------------------------------------------------
# Credential extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestCredentials:
    session_token: str | None = None
    api_key: str | None = None


def extract_session_token(request: Request, *, cookie_name: str, secret: str) -> str | None:
    """Find a session token by precedence: signed cookie, cookie, header, bearer."""
    # Clients that percent-encode cookie values send "s%3A..."
    cookie = unquote(request.cookies.get(cookie_name) or "")
    if cookie:
        if cookie.startswith(SIGNED_PREFIX):
            unsigned = unsign_value(cookie, secret)
            if unsigned:
                return unsigned
            auth_debug.debug("Session cookie signature did not verify")
        else:
            return cookie

    header = request.headers.get(AUTH_HEADER_SESSION)
    if header:
        return header

    authorization = request.headers.get(AUTH_HEADER_AUTHORIZATION, "")
    if authorization.startswith(BEARER_PREFIX):
        token = authorization[len(BEARER_PREFIX) :].strip()
        if token:
            return token
    return None


def extract_credentials(request: Request, *, cookie_name: str, secret: str) -> RequestCredentials:
    return RequestCredentials(
        session_token=extract_session_token(request, cookie_name=cookie_name, secret=secret),
        api_key=request.headers.get(AUTH_HEADER_API_KEY) or None,
    )


def client_ip(request: Request) -> str:
    """The trusted client address (proxy headers are resolved by the server)."""
    return request.client.host if request.client else ""


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _reject(engine: AuthEngine, reason: str, error: NeoSynthError) -> NeoSynthError:
    if engine.metrics is not None:
        engine.metrics.gate_rejections.labels(reason=reason).inc()
    return error


async def _resolve_session(engine: AuthEngine, token: str) -> Principal | None:
    session = await engine.sessions.find(token)
    if session is None:
        return None
    if not await engine.sessions.touch(session):
        auth_debug.debug("Session for %s went stale during refresh", session.user_id)
        return None
    return Principal.from_session(session)


async def _resolve_api_key(engine: AuthEngine, request: Request, full_key: str) -> Principal | None:
    record = await engine.api_keys.authenticate(full_key)
    if record is None:
        return None

    if not ip_allowed(client_ip(request), record.ip_allow_list):
        logger.warning("API key %s used from non-allowed address %s", record.key_id, client_ip(request))
        raise _reject(engine, "ip_not_allowed", ErrAccessDenied)

    limit = engine.api_keys.check_rate_limit(record)
    if not limit.allowed:
        raise _reject(engine, "rate_limited", RateLimitedError(limit.reset_time or 1))

    engine.api_keys.record_usage_in_background(record.key_id)
    return Principal.from_api_key(record)


async def resolve_principal(engine: AuthEngine, request: Request) -> Principal:
    """Resolve the request's principal, session first.

    Raises:
        NeoSynthError: 401 when nothing resolves, 403 when the key's IP
            allow-list rejects the caller, 429 when rate limited, and a
            generic 500 for unexpected failures.
    """
    creds = extract_credentials(
        request, cookie_name=engine.config.auth.cookie_name, secret=engine.cookie_secret
    )
    try:
        if creds.session_token:
            principal = await _resolve_session(engine, creds.session_token)
            if principal is not None:
                return principal
        if creds.api_key:
            principal = await _resolve_api_key(engine, request, creds.api_key)
            if principal is not None:
                return principal
    except NeoSynthError:
        raise
    except Exception as exc:
        logger.exception("Unexpected error while authenticating request")
        raise _reject(engine, "internal", ErrAuthInternal) from exc

    raise _reject(engine, "unauthenticated", ErrUnauthenticated)


async def resolve_session_principal(engine: AuthEngine, request: Request) -> Principal:
    """Like :func:`resolve_principal` but only a browser session is accepted."""
    token = extract_session_token(
        request, cookie_name=engine.config.auth.cookie_name, secret=engine.cookie_secret
    )
    try:
        principal = await _resolve_session(engine, token) if token else None
    except Exception as exc:
        logger.exception("Unexpected error while authenticating session")
        raise _reject(engine, "internal", ErrAuthInternal) from exc
    if principal is None:
        raise _reject(engine, "unauthenticated", ErrUnauthenticated)
    return principal
