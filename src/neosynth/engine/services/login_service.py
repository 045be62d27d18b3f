"""Step-up login: password, then trusted-device shortcut or a second factor.

State machine::

    AWAITING_PASSWORD --step1--> COMPLETED                (trusted device)
    AWAITING_PASSWORD --step1--> AWAITING_SECOND_FACTOR   (step token issued)
    AWAITING_SECOND_FACTOR --step2--> COMPLETED           (factor verified)

A factor mismatch leaves the step token untouched so the client can retry
until the token's original expiry.
"""

from __future__ import annotations

import asyncio
import enum
import functools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import select, update

from neosynth.engine.models.base import utcnow
from neosynth.engine.models.credential import PasswordCredential
from neosynth.engine.models.user import User
from neosynth.engine.services.device_service import parse_device_info
from neosynth.engine.services.session_service import DeviceInfo
from neosynth.engine.services.user_service import normalize_user_id
from neosynth.errors.definitions import (
    ErrInvalidCredentials,
    ErrMissingFields,
    ErrStepTokenInvalid,
)
from neosynth.errors.neosynth_errors import StepTwoRejected
from neosynth.utils.crypto import hash_password, verify_password

if TYPE_CHECKING:
    from neosynth.engine.client import AuthEngine
    from neosynth.engine.models.session import UserSession
    from neosynth.engine.services.second_factor_service import SecondFactor, SecondFactorMethod

logger = logging.getLogger(__name__)
auth_debug = logging.getLogger("neosynth.auth")


class LoginState(enum.StrEnum):
    AWAITING_PASSWORD = "awaiting_password"
    AWAITING_SECOND_FACTOR = "awaiting_second_factor"
    COMPLETED = "completed"


@dataclass
class LoginResult:
    """Outcome of one protocol step."""

    state: LoginState
    user: User | None = None
    session: UserSession | None = None
    step_token: str | None = None
    available_methods: list[str] = field(default_factory=list)
    expires_in: int | None = None
    auth_method: SecondFactorMethod | None = None
    device_token: str | None = None

    @property
    def requires_step2(self) -> bool:
        return self.state == LoginState.AWAITING_SECOND_FACTOR


@functools.lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> str:
    """A throwaway hash so unknown users cost the same bcrypt work as real ones."""
    return hash_password("neosynth-timing-equalizer", rounds=rounds)[0]


class LoginService:
    """Drives the two login steps against the auth stores."""

    def __init__(self, engine: AuthEngine) -> None:
        self._engine = engine

    def _record(self, step: str, outcome: str) -> None:
        if self._engine.metrics is not None:
            self._engine.metrics.logins.labels(step=step, outcome=outcome).inc()

    async def _load_user(self, user_id: str) -> tuple[User | None, PasswordCredential | None]:
        async with self._engine.datastore.session() as session:
            user = (
                await session.execute(select(User).where(User.user_id == user_id))
            ).scalar_one_or_none()
            credential = (
                await session.execute(
                    select(PasswordCredential).where(PasswordCredential.user_id == user_id)
                )
            ).scalar_one_or_none()
        return user, credential

    async def _mark_login(self, user: User) -> None:
        now = utcnow()
        async with self._engine.datastore.session() as session:
            await session.execute(
                update(User).where(User.user_id == user.user_id).values(last_login=now)
            )
            await session.commit()
        user.last_login = now

    # ------------------------------------------------------------------
    # Step 1
    # ------------------------------------------------------------------

    async def step1(
        self,
        username: str,
        password: str,
        device_fingerprint: str,
        *,
        device: DeviceInfo | None = None,
    ) -> LoginResult:
        """Verify the password and either complete login or issue a step token.

        Raises:
            NeoSynthError: ``ErrMissingFields`` or a uniform ``ErrInvalidCredentials``
                whether the user is unknown or the password is wrong.
        """
        self._engine.step_tokens.sweep()

        if not username or not password or not device_fingerprint:
            raise ErrMissingFields

        user, credential = await self._load_user(normalize_user_id(username))
        rounds = self._engine.config.auth.bcrypt_rounds
        stored_hash = credential.password_hash if credential is not None else _dummy_hash(rounds)
        password_ok = await asyncio.to_thread(verify_password, password, stored_hash)

        if user is None or credential is None or not password_ok:
            auth_debug.debug(
                "Step 1 rejected for %r (known=%s)", username, user is not None and credential is not None
            )
            self._record("step1", "invalid_credentials")
            raise ErrInvalidCredentials

        device = device or DeviceInfo()
        trusted = await self._engine.devices.is_trusted(user.user_id, device_fingerprint)
        if trusted is not None:
            await self._engine.devices.touch(trusted.id)
            await self._mark_login(user)
            session_row = await self._engine.sessions.create(
                user.user_id, is_admin=user.is_admin, device_info=device
            )
            logger.info("User %s logged in via trusted device", user.user_id)
            self._record("step1", "trusted_device")
            return LoginResult(state=LoginState.COMPLETED, user=user, session=session_row)

        step = self._engine.step_tokens.issue(
            user.user_id, device_fingerprint, is_admin=user.is_admin
        )
        methods = await self._engine.second_factor.available_methods(user.user_id)
        self._record("step1", "second_factor_required")
        return LoginResult(
            state=LoginState.AWAITING_SECOND_FACTOR,
            user=user,
            step_token=step.token,
            available_methods=methods,
            expires_in=self._engine.step_tokens.ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Step 2
    # ------------------------------------------------------------------

    async def step2(
        self,
        step_token: str,
        factor: SecondFactor,
        *,
        device: DeviceInfo | None = None,
    ) -> LoginResult:
        """Verify the second factor for a live step token.

        Raises:
            NeoSynthError: ``ErrStepTokenInvalid`` when the token is unknown or
                expired.
            StepTwoRejected: On a missing or mismatched factor; carries the
                same step token.
        """
        if not step_token:
            raise ErrMissingFields

        step = self._engine.step_tokens.get(step_token)
        if step is None:
            self._record("step2", "invalid_step_token")
            raise ErrStepTokenInvalid

        if not factor.present():
            self._record("step2", "missing_factor")
            raise StepTwoRejected(step_token, "2FA method required")

        user, credential = await self._load_user(step.user_id)
        if user is None or credential is None:
            self._engine.step_tokens.discard(step_token)
            raise ErrStepTokenInvalid

        method = await self._engine.second_factor.verify(user.user_id, factor)
        if method is None:
            self._record("step2", "invalid_factor")
            raise StepTwoRejected(step_token)

        # The token may have expired or been used by a racing request while
        # the factor was checked.
        if self._engine.step_tokens.consume(step_token) is None:
            logger.warning("Step token for %s lost during step 2", user.user_id)
            raise ErrStepTokenInvalid

        device = device or DeviceInfo()
        label = parse_device_info(device.user_agent)
        device_token = await self._engine.devices.trust(
            user.user_id, step.device_fingerprint, device_info=label, name=label
        )
        await self._mark_login(user)
        session_row = await self._engine.sessions.create(
            user.user_id, is_admin=user.is_admin, device_info=device
        )

        logger.info("User %s completed 2FA login via %s", user.user_id, method)
        self._record("step2", "completed")
        return LoginResult(
            state=LoginState.COMPLETED,
            user=user,
            session=session_row,
            auth_method=method,
            device_token=device_token,
        )
