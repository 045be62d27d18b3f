"""User service: registration, password change and TOTP enrollment."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from neosynth.engine.models.base import utcnow
from neosynth.engine.models.credential import PasswordCredential
from neosynth.engine.models.security import BackupCode, SecurityProfile, TrustedDevice
from neosynth.engine.models.user import User
from neosynth.engine.services.device_service import new_device_token
from neosynth.errors.definitions import (
    ErrCurrentPasswordIncorrect,
    ErrInvalidTotp,
    ErrMissingFields,
    ErrUserAlreadyExists,
    ErrUserNotFound,
    ErrWeakPassword,
)
from neosynth.utils import totp
from neosynth.utils.crypto import hash_password, verify_password

if TYPE_CHECKING:
    from collections.abc import Sequence

    from neosynth.engine.client import AuthEngine
    from neosynth.engine.models.session import UserSession
    from neosynth.engine.services.session_service import DeviceInfo

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def normalize_user_id(username: str) -> str:
    """Derive the stable user id: non-alphanumerics become ``_``, lower-cased."""
    return _NON_ALNUM.sub("_", username).lower()


@dataclass
class Registration:
    user: User
    device_token: str
    session: UserSession


class UserService:
    """Identity lifecycle around the password credential."""

    def __init__(self, engine: AuthEngine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> User | None:
        async with self._engine.datastore.session() as session:
            result = await session.execute(select(User).where(User.user_id == user_id))
            return result.scalar_one_or_none()

    async def exists(self, username: str) -> bool:
        return await self.get_user(normalize_user_id(username)) is not None

    async def counts(self) -> tuple[int, int]:
        """Return (user count, admin count)."""
        async with self._engine.datastore.session() as session:
            users = (await session.execute(select(func.count()).select_from(User))).scalar_one()
            admins = (
                await session.execute(
                    select(func.count()).select_from(User).where(User.is_admin.is_(True))
                )
            ).scalar_one()
        return users, admins

    async def first_time_setup_status(self) -> dict[str, Any]:
        """Describe whether the instance still needs its first (admin) user."""
        users, admins = await self.counts()
        auto_admin_disabled = self._engine.config.auth.disable_auto_admin
        first_time = users == 0
        return {
            "isFirstTimeSetup": first_time,
            "requiresSetup": first_time or (admins == 0 and not auto_admin_disabled),
            "userCount": users,
            "adminCount": admins,
            "autoAdminDisabled": auto_admin_disabled,
            "willCreateAdmin": first_time and not auto_admin_disabled,
        }

    # ------------------------------------------------------------------
    # TOTP enrollment
    # ------------------------------------------------------------------

    async def setup_totp(self, username: str) -> dict[str, str]:
        """Generate a TOTP secret for a username that is not yet registered.

        Raises:
            NeoSynthError: If the username is missing or already taken.
        """
        if not username:
            raise ErrMissingFields
        if await self.exists(username):
            raise ErrUserAlreadyExists
        secret = totp.generate_secret()
        uri = totp.provisioning_uri(secret, username)
        return {"secret": secret, "otpauthUrl": uri, "qrCodeUrl": totp.qr_data_url(uri)}

    @staticmethod
    def verify_totp_code(secret: str, code: str) -> None:
        """Check an enrollment code against its freshly generated secret.

        Raises:
            NeoSynthError: ``ErrInvalidTotp`` on mismatch.
        """
        if not secret or not code:
            raise ErrMissingFields
        if not totp.verify_totp(secret, code):
            raise ErrInvalidTotp

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(
        self,
        *,
        username: str,
        password: str,
        totp_secret: str,
        backup_codes: Sequence[str],
        device_fingerprint: str,
        device_label: str,
        device: DeviceInfo,
    ) -> Registration:
        """Create a user with password, TOTP seed, backup codes and a trusted device.

        The very first user becomes admin unless auto-admin is disabled.

        Raises:
            NeoSynthError: On missing fields, a short password or a taken username.
        """
        if not username or not password or not totp_secret or not backup_codes or not device_fingerprint:
            raise ErrMissingFields
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ErrWeakPassword

        user_id = normalize_user_id(username)
        if await self.get_user(user_id) is not None:
            raise ErrUserAlreadyExists

        users, _ = await self.counts()
        make_admin = users == 0 and not self._engine.config.auth.disable_auto_admin

        password_hash, salt = await asyncio.to_thread(
            hash_password, password, rounds=self._engine.config.auth.bcrypt_rounds
        )
        device_token = new_device_token()
        now = utcnow()
        user = User(user_id=user_id, username=username, is_admin=make_admin, auth_enabled=True)

        try:
            async with self._engine.datastore.session() as session:
                session.add(user)
                await session.flush()
                session.add(
                    PasswordCredential(
                        user_id=user_id,
                        password_hash=password_hash,
                        salt=salt,
                        totp_secret_encrypted=self._engine.totp_cipher.encrypt(totp_secret),
                        last_password_change=now,
                    )
                )
                session.add(SecurityProfile(user_id=user_id, last_security_update=now))
                await session.flush()
                session.add_all(
                    BackupCode(user_id=user_id, code=str(code), used=False) for code in backup_codes
                )
                session.add(
                    TrustedDevice(
                        user_id=user_id,
                        device_fingerprint=device_fingerprint,
                        device_token=device_token,
                        device_info=device_label,
                        name=device_label,
                        last_used=now,
                        created_at=now,
                    )
                )
                await session.commit()
        except IntegrityError as exc:
            raise ErrUserAlreadyExists from exc

        if make_admin:
            logger.info("User %s granted admin during first-time setup", user_id)
        logger.info("User %s registered", user_id)

        session_row = await self._engine.sessions.create(
            user_id, is_admin=make_admin, device_info=device
        )
        return Registration(user=user, device_token=device_token, session=session_row)

    # ------------------------------------------------------------------
    # Password change
    # ------------------------------------------------------------------

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """Replace the password after verifying the current one.

        Raises:
            NeoSynthError: On missing fields, a short password, an unknown
                user or a wrong current password.
        """
        if not current_password or not new_password:
            raise ErrMissingFields
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ErrWeakPassword

        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(PasswordCredential).where(PasswordCredential.user_id == user_id)
            )
            credential = result.scalar_one_or_none()
        if credential is None:
            raise ErrUserNotFound

        ok = await asyncio.to_thread(verify_password, current_password, credential.password_hash)
        if not ok:
            raise ErrCurrentPasswordIncorrect

        password_hash, salt = await asyncio.to_thread(
            hash_password, new_password, rounds=self._engine.config.auth.bcrypt_rounds
        )
        async with self._engine.datastore.session() as session:
            await session.execute(
                update(PasswordCredential)
                .where(PasswordCredential.user_id == user_id)
                .values(password_hash=password_hash, salt=salt, last_password_change=utcnow())
            )
            await session.commit()
        logger.info("Password changed for user %s", user_id)
