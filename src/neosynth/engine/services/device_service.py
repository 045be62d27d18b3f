"""Device trust registry: fingerprinted clients allowed to skip the second factor."""

from __future__ import annotations

import logging
import re
import secrets
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update

from neosynth.engine.models.base import utcnow
from neosynth.engine.models.security import TrustedDevice

if TYPE_CHECKING:
    from neosynth.engine.client import AuthEngine

logger = logging.getLogger(__name__)

_BROWSER_RE = re.compile(r"(Chrome|Firefox|Safari|Edge|Opera)", re.IGNORECASE)
_OS_RE = re.compile(r"(Windows|Mac|Linux|Android|iOS)", re.IGNORECASE)


def parse_device_info(user_agent: str | None) -> str:
    """Summarize a user agent as ``"<Browser> on <OS>"``."""
    user_agent = user_agent or ""
    browser = _BROWSER_RE.search(user_agent)
    system = _OS_RE.search(user_agent)
    return f"{browser.group(1) if browser else 'Unknown'} on {system.group(1) if system else 'Unknown'}"


def new_device_token() -> str:
    return secrets.token_hex(32)


class DeviceService:
    """Per-user trusted devices.

    The fingerprint is a client-computed convenience signal, never a security
    boundary on its own: it only lets a login skip the second factor.
    """

    def __init__(self, engine: AuthEngine) -> None:
        self._engine = engine

    async def is_trusted(self, user_id: str, fingerprint: str) -> TrustedDevice | None:
        """Return the trusted device with exactly this fingerprint, if any."""
        if not fingerprint:
            return None
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(TrustedDevice).where(
                    TrustedDevice.user_id == user_id,
                    TrustedDevice.device_fingerprint == fingerprint,
                )
            )
            return result.scalars().first()

    async def trust(
        self,
        user_id: str,
        fingerprint: str,
        *,
        device_info: str = "",
        name: str | None = None,
    ) -> str:
        """Register *fingerprint* as trusted and return its bearer token.

        A fingerprint that is already trusted keeps its row and gets a
        freshly rotated token.
        """
        token = new_device_token()
        now = utcnow()
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                update(TrustedDevice)
                .where(
                    TrustedDevice.user_id == user_id,
                    TrustedDevice.device_fingerprint == fingerprint,
                )
                .values(device_token=token, last_used=now)
            )
            if result.rowcount == 0:
                session.add(
                    TrustedDevice(
                        user_id=user_id,
                        device_fingerprint=fingerprint,
                        device_token=token,
                        device_info=device_info or "Unknown",
                        name=name or "Unknown Device",
                        last_used=now,
                        created_at=now,
                    )
                )
            await session.commit()
        logger.info("Device trusted for user %s", user_id)
        return token

    async def find_by_token(self, user_id: str, device_token: str) -> TrustedDevice | None:
        """Resolve a device bearer token, scoped to its owner."""
        if not device_token:
            return None
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(TrustedDevice).where(
                    TrustedDevice.user_id == user_id,
                    TrustedDevice.device_token == device_token,
                )
            )
            return result.scalar_one_or_none()

    async def touch(self, device_id: int) -> None:
        async with self._engine.datastore.session() as session:
            await session.execute(
                update(TrustedDevice).where(TrustedDevice.id == device_id).values(last_used=utcnow())
            )
            await session.commit()

    async def revoke(self, user_id: str, fingerprint: str) -> int:
        """Remove the device(s) with *fingerprint*. Returns rows removed."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                delete(TrustedDevice).where(
                    TrustedDevice.user_id == user_id,
                    TrustedDevice.device_fingerprint == fingerprint,
                )
            )
            await session.commit()
        if result.rowcount:
            logger.info("Revoked trusted device for user %s", user_id)
        return result.rowcount

    async def list_devices(self, user_id: str) -> list[TrustedDevice]:
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(TrustedDevice)
                .where(TrustedDevice.user_id == user_id)
                .order_by(TrustedDevice.created_at)
            )
            return list(result.scalars().all())
