"""Shared test fixtures for the neosynth-auth test suite."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest

from neosynth.config.settings import AppConfig, AuthConfig, DatabaseConfig, DatabaseEngine, TaskConfig
from neosynth.engine.services.session_service import DeviceInfo
from neosynth.utils import totp

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from pathlib import Path

    from neosynth.engine.client import AuthEngine

TOTP_KEY = "0f" * 32
COOKIE_SECRET = "test-cookie-secret"
PASSWORD = "correct horse battery"
TEST_DEVICE = DeviceInfo(user_agent="pytest (Linux) Firefox/120.0", ip="127.0.0.1", platform="pytest")


@dataclass
class EnrolledUser:
    """A registered user plus everything the test needs to log in as them."""

    username: str
    user_id: str
    password: str
    totp_secret: str
    backup_codes: list[str]
    fingerprint: str
    device_token: str
    session_token: str
    is_admin: bool


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """A test AppConfig: file-backed SQLite, cheap bcrypt, no background sweeps."""
    return AppConfig(
        debug=True,
        db=DatabaseConfig(
            engine=DatabaseEngine.SQLITE,
            dsn=f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}",
        ),
        auth=AuthConfig(
            totp_encryption_key=TOTP_KEY,
            cookie_secret=COOKIE_SECRET,
            bcrypt_rounds=4,
        ),
        task=TaskConfig(enabled=False),
    )


@pytest.fixture
async def engine(app_config: AppConfig) -> AsyncIterator[AuthEngine]:
    from neosynth.engine.client import AuthEngine

    eng = AuthEngine(app_config)
    await eng.initialize()
    yield eng
    await eng.close()


@pytest.fixture
def enroll(engine: AuthEngine) -> Callable[..., Awaitable[EnrolledUser]]:
    """Factory registering a user through :meth:`UserService.register`."""

    async def _enroll(
        username: str = "alice",
        *,
        password: str = PASSWORD,
        fingerprint: str = "fp-registered",
        backup_codes: list[str] | None = None,
    ) -> EnrolledUser:
        secret = totp.generate_secret()
        codes = backup_codes if backup_codes is not None else ["BACKUP01", "BACKUP02", "BACKUP03"]
        registration = await engine.users.register(
            username=username,
            password=password,
            totp_secret=secret,
            backup_codes=codes,
            device_fingerprint=fingerprint,
            device_label="pytest device",
            device=TEST_DEVICE,
        )
        return EnrolledUser(
            username=username,
            user_id=registration.user.user_id,
            password=password,
            totp_secret=secret,
            backup_codes=list(codes),
            fingerprint=fingerprint,
            device_token=registration.device_token,
            session_token=registration.session.token,
            is_admin=registration.user.is_admin,
        )

    return _enroll


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
