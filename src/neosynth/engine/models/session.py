"""UserSession model: browser sessions backing the session cookie."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from neosynth.engine.models.base import Base, CreatedAtMixin, utcnow

SESSION_TOKEN_PREFIX = "nss_"


class UserSession(Base, CreatedAtMixin):
    """Server-side session record.

    A session is valid iff ``is_active`` and ``now < expires_at``. Expired rows
    are hard-deleted by the session sweep.
    """

    __tablename__ = "user_sessions"

    token: Mapped[str] = mapped_column(String(80), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    ip: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    platform: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    last_active: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def is_valid(self, now: datetime | None = None) -> bool:
        """Return True if the session is active and not past its expiry."""
        now = now or utcnow()
        return self.is_active and now < self.expires_at

    @property
    def device_info(self) -> dict[str, str]:
        return {"userAgent": self.user_agent, "ip": self.ip, "platform": self.platform}

    def __repr__(self) -> str:
        return f"<UserSession token={self.token[:12]}... user={self.user_id} active={self.is_active}>"
