"""PasswordCredential model: password hash and encrypted TOTP seed."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from neosynth.engine.models.base import Base, CreatedAtMixin, utcnow


class PasswordCredential(Base, CreatedAtMixin):
    """One-to-one password credential for a user.

    ``password_hash`` is a bcrypt hash and can never be reversed.
    ``totp_secret_encrypted`` is AES encrypted with the server key so the seed
    can be recovered for verification.
    """

    __tablename__ = "user_auth"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    salt: Mapped[str] = mapped_column(String(64), nullable=False)
    totp_secret_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    last_password_change: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<PasswordCredential user={self.user_id} totp={self.totp_secret_encrypted is not None}>"
