"""Session cookie helpers: signing, setting and clearing.

Signed values use the ``s:<value>.<signature>`` layout, where the signature
is an HMAC-SHA256 of the value in standard base64 with the trailing ``=``
padding stripped. This matches cookies signed by the Node cookie-signature
scheme, so sessions survive a switch between the two.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from starlette.responses import Response

    from neosynth.config.settings import AuthConfig

SIGNED_PREFIX = "s:"


def _signature(value: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii").rstrip("=")


def sign_value(value: str, secret: str) -> str:
    return f"{SIGNED_PREFIX}{value}.{_signature(value, secret)}"


def unsign_value(signed: str, secret: str) -> str | None:
    """Return the original value, or None if the signature does not verify."""
    if not signed.startswith(SIGNED_PREFIX):
        return None
    body = signed[len(SIGNED_PREFIX) :]
    value, sep, signature = body.rpartition(".")
    if not sep or not value:
        return None
    if not hmac.compare_digest(signature, _signature(value, secret)):
        return None
    return value


def set_session_cookie(
    response: Response,
    token: str,
    expires_at: datetime,
    *,
    auth: AuthConfig,
    secret: str,
) -> None:
    """Set the signed session cookie (httpOnly, sameSite=lax, secure in production)."""
    response.set_cookie(
        key=auth.cookie_name,
        value=sign_value(token, secret),
        expires=expires_at,
        path="/",
        httponly=True,
        secure=auth.production,
        samesite="lax",
    )


def clear_session_cookie(response: Response, *, auth: AuthConfig) -> None:
    """Expire the session cookie (sameSite=strict)."""
    response.delete_cookie(
        key=auth.cookie_name,
        path="/",
        httponly=True,
        secure=auth.production,
        samesite="strict",
    )
