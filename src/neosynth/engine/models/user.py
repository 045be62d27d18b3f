"""User model: the identity every credential hangs off."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from neosynth.engine.models.base import Base, CreatedAtMixin


class User(Base, CreatedAtMixin):
    """A registered NeoSynth user."""

    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(
        String(64), primary_key=True, comment="Normalized, lower-case username"
    )
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auth_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_login: Mapped[datetime | None] = mapped_column(nullable=True, default=None)

    def __repr__(self) -> str:
        return f"<User id={self.user_id} admin={self.is_admin}>"
