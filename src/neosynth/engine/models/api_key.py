"""ApiKey model: programmatic credentials stored only by hash."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from neosynth.engine.models.base import Base, CreatedAtMixin
from neosynth.engine.permissions import Role, permission_name


class ApiKey(Base, CreatedAtMixin):
    """API key record.

    The plaintext key is returned once at creation; ``key_hash`` (SHA-256 of
    the full key) is the only form that is stored or compared.
    """

    __tablename__ = "api_keys"

    key_id: Mapped[str] = mapped_column(
        String(16), primary_key=True, comment="Public identifier embedded in the key"
    )
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=Role.USER.value)
    permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    prefix: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    last_used: Mapped[datetime | None] = mapped_column(nullable=True, default=None)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rate_limit_per_minute: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    rate_limit_per_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    ip_allow_list: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True, default=None, index=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    def has_permission(self, permission: str) -> bool:
        """Set membership over the key's flat permission list."""
        return permission in (self.permissions or [])

    def can_access(self, resource: str, action: str, target_user_id: str | None = None) -> bool:
        """Check a permission plus row-level ownership.

        ``user`` keys only reach their own user's rows; ``admin`` keys bypass
        ownership.
        """
        if not self.has_permission(permission_name(resource, action)):
            return False
        if self.role == Role.ADMIN:
            return True
        if self.role == Role.USER and target_user_id and self.user_id != target_user_id:
            return False
        return True

    @property
    def rate_limit(self) -> dict[str, int]:
        return {
            "requestsPerMinute": self.rate_limit_per_minute,
            "requestsPerHour": self.rate_limit_per_hour,
        }

    def __repr__(self) -> str:
        return f"<ApiKey id={self.key_id} user={self.user_id} role={self.role}>"
