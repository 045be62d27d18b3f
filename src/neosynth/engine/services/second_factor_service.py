"""Second-factor verification: TOTP, single-use backup codes and temporary codes."""

from __future__ import annotations

import enum
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, exists, or_, select, update

from neosynth.engine.models.base import utcnow
from neosynth.engine.models.credential import PasswordCredential
from neosynth.engine.models.security import BackupCode, TempCode
from neosynth.utils.crypto import constant_time_equals
from neosynth.utils.totp import verify_totp

if TYPE_CHECKING:
    from neosynth.engine.client import AuthEngine

logger = logging.getLogger(__name__)
auth_debug = logging.getLogger("neosynth.auth")

TEMP_CODE_LENGTH = 6
TEMP_CODE_ALPHABET = string.ascii_uppercase + string.digits


class SecondFactorMethod(enum.StrEnum):
    """Which factor satisfied step 2 (reported back as ``authMethod``)."""

    TOTP = "totp"
    BACKUP_CODE = "backupCode"
    TEMP_CODE = "tempCode"


@dataclass(frozen=True)
class SecondFactor:
    """The factor values presented at step 2. Only the first present one is checked."""

    totp_token: str | None = None
    backup_code: str | None = None
    temp_code: str | None = None

    def present(self) -> bool:
        return bool(self.totp_token or self.backup_code or self.temp_code)


def new_temp_code() -> str:
    return "".join(secrets.choice(TEMP_CODE_ALPHABET) for _ in range(TEMP_CODE_LENGTH))


class SecondFactorService:
    """Verifies exactly one presented second factor for a user.

    Backup and temporary codes are consumed with a conditional
    ``UPDATE ... WHERE used = false``; whichever request's update lands
    first wins and every other attempt with the same code fails.
    """

    def __init__(self, engine: AuthEngine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def available_methods(self, user_id: str) -> list[str]:
        """Report which factors this user can present (``totp``, ``backup``, ``tempCode``)."""
        now = utcnow()
        async with self._engine.datastore.session() as session:
            has_totp = (
                await session.execute(
                    select(
                        exists().where(
                            PasswordCredential.user_id == user_id,
                            PasswordCredential.totp_secret_encrypted.is_not(None),
                        )
                    )
                )
            ).scalar()
            has_backup = (
                await session.execute(
                    select(
                        exists().where(BackupCode.user_id == user_id, BackupCode.used.is_(False))
                    )
                )
            ).scalar()
            has_temp = (
                await session.execute(
                    select(
                        exists().where(
                            TempCode.user_id == user_id,
                            TempCode.used.is_(False),
                            TempCode.expires_at > now,
                        )
                    )
                )
            ).scalar()

        methods: list[str] = []
        if has_totp:
            methods.append("totp")
        if has_backup:
            methods.append("backup")
        if has_temp:
            methods.append("tempCode")
        return methods

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify(self, user_id: str, factor: SecondFactor) -> SecondFactorMethod | None:
        """Check the presented factor.

        Precedence is TOTP, then backup code, then temporary code; only the
        first one present is evaluated.

        Returns:
            The method that succeeded, or None on mismatch.
        """
        if factor.totp_token:
            ok = await self._verify_totp(user_id, factor.totp_token)
            method = SecondFactorMethod.TOTP
        elif factor.backup_code:
            ok = await self.consume_backup_code(user_id, factor.backup_code)
            method = SecondFactorMethod.BACKUP_CODE
        elif factor.temp_code:
            ok = await self.consume_temp_code(user_id, factor.temp_code)
            method = SecondFactorMethod.TEMP_CODE
        else:
            return None

        auth_debug.debug("Second factor %s for %s: %s", method, user_id, "ok" if ok else "rejected")
        return method if ok else None

    async def _verify_totp(self, user_id: str, code: str) -> bool:
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(PasswordCredential.totp_secret_encrypted).where(
                    PasswordCredential.user_id == user_id
                )
            )
            encrypted = result.scalar_one_or_none()
        if not encrypted:
            return False
        secret = self._engine.totp_cipher.decrypt(encrypted)
        return verify_totp(secret, code)

    async def consume_backup_code(self, user_id: str, code: str) -> bool:
        """Burn a matching unused backup code. True only for the request that burned it."""
        code = code.strip()
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(BackupCode.id, BackupCode.code).where(
                    BackupCode.user_id == user_id, BackupCode.used.is_(False)
                )
            )
            match_id = None
            for row_id, stored in result.all():
                if constant_time_equals(stored, code):
                    match_id = row_id
            if match_id is None:
                return False

            burned = await session.execute(
                update(BackupCode)
                .where(BackupCode.id == match_id, BackupCode.used.is_(False))
                .values(used=True, used_at=utcnow())
            )
            await session.commit()
        return burned.rowcount == 1

    async def consume_temp_code(self, user_id: str, code: str) -> bool:
        """Burn a matching unused, unexpired temporary code."""
        code = code.strip().upper()
        now = utcnow()
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(TempCode.id, TempCode.code).where(
                    TempCode.user_id == user_id,
                    TempCode.used.is_(False),
                    TempCode.expires_at > now,
                )
            )
            match_id = None
            for row_id, stored in result.all():
                if constant_time_equals(stored, code):
                    match_id = row_id
            if match_id is None:
                return False

            burned = await session.execute(
                update(TempCode)
                .where(
                    TempCode.id == match_id,
                    TempCode.used.is_(False),
                    TempCode.expires_at > now,
                )
                .values(used=True)
            )
            await session.commit()
        return burned.rowcount == 1

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    async def issue_temp_code(self, user_id: str) -> tuple[str, datetime]:
        """Mint a temporary code, pruning the user's used or expired ones.

        The caller is responsible for proving the request comes from a
        trusted device.
        """
        now = utcnow()
        code = new_temp_code()
        expires_at = now + timedelta(seconds=self._engine.config.auth.temp_code_ttl_seconds)
        async with self._engine.datastore.session() as session:
            await session.execute(
                delete(TempCode).where(
                    TempCode.user_id == user_id,
                    or_(TempCode.used.is_(True), TempCode.expires_at <= now),
                )
            )
            session.add(TempCode(user_id=user_id, code=code, expires_at=expires_at, used=False))
            await session.commit()
        logger.info("Temporary code issued for user %s", user_id)
        return code, expires_at

    async def sweep_expired_temp_codes(self) -> int:
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                delete(TempCode).where(or_(TempCode.used.is_(True), TempCode.expires_at <= utcnow()))
            )
            await session.commit()
        return result.rowcount
