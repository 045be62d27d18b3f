"""Security profile models: backup codes, temporary codes, trusted devices.

Each single-use code lives in its own row so that consuming it is one
conditional ``UPDATE ... WHERE used = false``.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from neosynth.engine.models.base import Base, CreatedAtMixin, utcnow


class SecurityProfile(Base, CreatedAtMixin):
    """Per-user anchor row for second-factor material."""

    __tablename__ = "user_security"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    last_security_update: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


class BackupCode(Base):
    """Single-use recovery code issued at registration."""

    __tablename__ = "backup_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("user_security.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(nullable=True, default=None)


class TempCode(Base):
    """Short-lived single-use code minted from a trusted device."""

    __tablename__ = "temp_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("user_security.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class TrustedDevice(Base, CreatedAtMixin):
    """A fingerprinted client allowed to skip the second factor."""

    __tablename__ = "trusted_devices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("user_security.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_fingerprint: Mapped[str] = mapped_column(String(256), nullable=False)
    device_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    device_info: Mapped[str] = mapped_column(String(256), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="Unknown Device")
    last_used: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<TrustedDevice user={self.user_id} name={self.name!r}>"
