"""Session service: issue, resolve, refresh, revoke and sweep browser sessions."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, or_, select, update

from neosynth.engine.models.base import utcnow
from neosynth.engine.models.session import SESSION_TOKEN_PREFIX, UserSession

if TYPE_CHECKING:
    from neosynth.engine.client import AuthEngine

logger = logging.getLogger(__name__)
auth_debug = logging.getLogger("neosynth.auth")


@dataclass(frozen=True)
class DeviceInfo:
    """Client details recorded on a session."""

    user_agent: str = ""
    ip: str = ""
    platform: str = ""


def new_session_token() -> str:
    """Fixed prefix plus 256 bits of randomness."""
    return f"{SESSION_TOKEN_PREFIX}{secrets.token_hex(32)}"


class SessionService:
    """Datastore-backed session store.

    The datastore is the single source of truth: lookups filter on
    ``is_active`` in SQL and refreshes are conditional updates, so a session
    revoked or expired by another request is never treated as live.
    """

    def __init__(self, engine: AuthEngine) -> None:
        self._engine = engine

    def _ttl_for(self, *, is_admin: bool) -> timedelta:
        cfg = self._engine.config.auth
        days = cfg.admin_session_ttl_days if is_admin else cfg.session_ttl_days
        return timedelta(days=days)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self,
        user_id: str,
        *,
        is_admin: bool = False,
        device_info: DeviceInfo | None = None,
    ) -> UserSession:
        """Issue a new session, clearing the user's dead sessions first.

        Args:
            user_id: The owning user.
            is_admin: Whether the session carries admin rights.
            device_info: Client details to record.

        Returns:
            The persisted session.
        """
        device_info = device_info or DeviceInfo()
        now = utcnow()
        session_row = UserSession(
            token=new_session_token(),
            user_id=user_id,
            is_admin=is_admin,
            user_agent=(device_info.user_agent or "")[:512],
            ip=device_info.ip or "",
            platform=device_info.platform or "",
            created_at=now,
            last_active=now,
            expires_at=now + self._ttl_for(is_admin=is_admin),
            is_active=True,
        )

        async with self._engine.datastore.session() as session:
            await session.execute(
                delete(UserSession).where(
                    UserSession.user_id == user_id,
                    or_(UserSession.expires_at < now, UserSession.is_active.is_(False)),
                )
            )
            session.add(session_row)
            await session.commit()

        logger.info("Session created for user %s", user_id)
        return session_row

    async def find(self, token: str) -> UserSession | None:
        """Return the session for *token* iff it is active and unexpired.

        An active row found past its expiry is revoked before returning None.
        """
        if not token:
            return None
        now = utcnow()
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(UserSession).where(
                    UserSession.token == token,
                    UserSession.is_active.is_(True),
                )
            )
            found = result.scalar_one_or_none()

        if found is None:
            auth_debug.debug("No active session for token %s...", token[:12])
            return None

        if not found.is_valid(now):
            auth_debug.debug("Session for %s expired at %s", found.user_id, found.expires_at)
            await self.revoke(token)
            return None

        return found

    async def touch(self, session_row: UserSession) -> bool:
        """Refresh ``last_active`` if the session is still live in the datastore.

        Returns:
            False if the session was revoked or expired concurrently.
        """
        now = utcnow()
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                update(UserSession)
                .where(
                    UserSession.token == session_row.token,
                    UserSession.is_active.is_(True),
                    UserSession.expires_at > now,
                )
                .values(last_active=now)
            )
            await session.commit()
        if result.rowcount != 1:
            return False
        session_row.last_active = now
        return True

    async def revoke(self, token: str) -> bool:
        """Soft-delete one session. Returns False if no such session exists."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                update(UserSession).where(UserSession.token == token).values(is_active=False)
            )
            await session.commit()
        return result.rowcount > 0

    async def revoke_all(self, user_id: str) -> int:
        """Soft-delete every session of *user_id*."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                update(UserSession)
                .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
                .values(is_active=False)
            )
            await session.commit()
        logger.info("Revoked %d sessions for user %s", result.rowcount, user_id)
        return result.rowcount

    async def sweep_expired(self) -> int:
        """Hard-delete sessions past their expiry."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                delete(UserSession).where(UserSession.expires_at < utcnow())
            )
            await session.commit()
        return result.rowcount

    async def list_for_user(self, user_id: str) -> list[UserSession]:
        """List the user's active sessions, newest first."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(UserSession)
                .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
                .order_by(UserSession.created_at.desc())
            )
            return list(result.scalars().all())
