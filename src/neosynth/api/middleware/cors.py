"""CORS for browser clients that carry the session cookie."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware

from neosynth.api.middleware.auth import AUTH_HEADER_API_KEY, AUTH_HEADER_SESSION

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fastapi import FastAPI

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
ALLOWED_HEADERS = ["authorization", "content-type", AUTH_HEADER_SESSION, AUTH_HEADER_API_KEY]
PREFLIGHT_MAX_AGE = 600


def credentialed_origins(origins: Iterable[str] | None) -> list[str]:
    """Normalise configured origins; a wildcard cannot be combined with cookies."""
    allowed: list[str] = []
    for origin in origins or ():
        origin = origin.strip().rstrip("/")
        if not origin:
            continue
        if origin == "*":
            logger.warning("Ignoring '*' in cors_origins: credentialed requests need explicit origins")
            continue
        if origin not in allowed:
            allowed.append(origin)
    return allowed


def setup_cors(app: FastAPI, origins: Iterable[str] | None = None) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=credentialed_origins(origins),
        allow_credentials=True,
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
        expose_headers=["Retry-After"],
        max_age=PREFLIGHT_MAX_AGE,
    )
