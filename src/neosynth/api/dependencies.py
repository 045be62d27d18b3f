"""FastAPI dependency injection helpers.

Provides ``Depends()``-compatible callables for engine access,
authentication and authorization in route handlers. Guards operate on the
resolved :class:`Principal` only, so handlers never branch on how the
caller authenticated.

Usage in a route::

    @router.get("/devices/{userId}")
    async def list_devices(
        principal: Annotated[Principal, Depends(require_ownership("userId"))],
        engine: Annotated[AuthEngine, Depends(get_engine)],
    ) -> ...:
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request

from neosynth.api.middleware.auth import (
    Principal,
    client_ip,
    resolve_principal,
    resolve_session_principal,
)
from neosynth.engine.client import AuthEngine  # noqa: TC001
from neosynth.engine.ratelimit import WindowLimit
from neosynth.errors.definitions import (
    ErrAccessDenied,
    ErrAdminRequired,
    ErrAuthInternal,
    ErrForbidden,
)
from neosynth.errors.neosynth_errors import RateLimitedError

if TYPE_CHECKING:
    from collections.abc import Callable

    from neosynth.config.settings import RateLimitConfig

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def get_engine(request: Request) -> AuthEngine:
    """Retrieve the engine stored on ``app.state`` during lifespan startup."""
    engine: AuthEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ErrAuthInternal
    return engine


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


async def get_principal(
    request: Request,
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> Principal:
    """Resolve (once per request) the caller's principal."""
    cached: Principal | None = getattr(request.state, "principal", None)
    if cached is not None:
        return cached
    principal = await resolve_principal(engine, request)
    request.state.principal = principal
    return principal


def require_user(
    principal: Annotated[Principal, Depends(get_principal)],
) -> Principal:
    """Any authenticated caller, by session or API key."""
    return principal


def require_admin(
    principal: Annotated[Principal, Depends(get_principal)],
) -> Principal:
    """Raises 403 unless the principal has the admin role."""
    if not principal.is_admin:
        raise ErrAdminRequired
    return principal


async def require_session(
    request: Request,
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> Principal:
    """Browser session only; API keys and device tokens are not accepted."""
    return await resolve_session_principal(engine, request)


# ---------------------------------------------------------------------------
# Guard factories
# ---------------------------------------------------------------------------


def require_ownership(param: str = "userId") -> Callable[..., Principal]:
    """Guard: the path parameter *param* must be the caller's own user id (admins pass)."""

    def _guard(
        request: Request,
        principal: Annotated[Principal, Depends(get_principal)],
    ) -> Principal:
        if not principal.owns(request.path_params.get(param)):
            raise ErrAccessDenied
        return principal

    return _guard


def require_permission(permission: str) -> Callable[..., Principal]:
    """Guard: the principal must hold *permission* (``resource.action``)."""

    def _guard(principal: Annotated[Principal, Depends(get_principal)]) -> Principal:
        if not principal.has_permission(permission):
            raise ErrForbidden
        return principal

    return _guard


def require_access(resource: str, action: str, param: str | None = None) -> Callable[..., Principal]:
    """Guard: permission plus row-level ownership of the user named by *param*."""

    def _guard(
        request: Request,
        principal: Annotated[Principal, Depends(get_principal)],
    ) -> Principal:
        target = request.path_params.get(param) if param else None
        if not principal.can_access(resource, action, target):
            raise ErrAccessDenied
        return principal

    return _guard


# ---------------------------------------------------------------------------
# Throttles
# ---------------------------------------------------------------------------


def throttle(
    scope: str,
    limit: Callable[[RateLimitConfig], WindowLimit],
    message: str,
) -> Callable[..., None]:
    """Per-client-IP sliding-window throttle for unauthenticated endpoints."""

    def _throttle(
        request: Request,
        engine: Annotated[AuthEngine, Depends(get_engine)],
    ) -> None:
        window = limit(engine.config.rate_limit)
        result = engine.rate_limiter.check(f"{scope}:{client_ip(request)}", [window])
        if not result.allowed:
            if engine.metrics is not None:
                engine.metrics.rate_limited.labels(scope=scope).inc()
            raise RateLimitedError(result.reset_time or 1, message)

    return _throttle


totp_setup_throttle = throttle(
    "totp_setup",
    lambda cfg: WindowLimit(cfg.totp_setup_max, cfg.totp_setup_window_seconds),
    "Too many TOTP setup attempts, please try again later",
)
totp_verify_throttle = throttle(
    "totp_verify",
    lambda cfg: WindowLimit(cfg.totp_verify_max, cfg.totp_verify_window_seconds),
    "Too many TOTP verification attempts, please try again later",
)
