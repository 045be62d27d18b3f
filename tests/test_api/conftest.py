"""Fixtures for HTTP-level tests against the full application."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from fastapi.testclient import TestClient

from neosynth.api.app import create_app
from neosynth.utils import totp

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from neosynth.config.settings import AppConfig

API_PASSWORD = "correct horse battery"
BACKUP_CODES = ["BK000001", "BK000002", "BK000003"]
BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


@pytest.fixture
def client(app_config: AppConfig) -> Iterator[TestClient]:
    """TestClient with the lifespan (engine startup/shutdown) running."""
    app = create_app(config=app_config)
    with TestClient(app, headers={"user-agent": BROWSER_UA}) as c:
        yield c


@pytest.fixture
def register(client: TestClient) -> Callable[..., dict[str, Any]]:
    """Register a user over HTTP.

    Returns the registration body plus ``secret`` and ``backupCodes``. The
    session cookie is dropped unless *keep_cookie* is set, so tests choose
    their credential explicitly.
    """

    def _register(
        username: str = "alice",
        *,
        fingerprint: str = "fp-browser",
        keep_cookie: bool = False,
    ) -> dict[str, Any]:
        secret = totp.generate_secret()
        resp = client.post(
            "/api/auth/register",
            json={
                "username": username,
                "password": API_PASSWORD,
                "totpSecret": secret,
                "backupCodes": BACKUP_CODES,
                "deviceFingerprint": fingerprint,
            },
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        body["secret"] = secret
        body["backupCodes"] = list(BACKUP_CODES)
        body["username"] = username
        if not keep_cookie:
            client.cookies.clear()
        return body

    return _register