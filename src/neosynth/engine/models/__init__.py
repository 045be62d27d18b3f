"""Auth data models (SQLAlchemy ORM).

Import :data:`ALL_MODELS` for table creation.
"""

from neosynth.engine.models.api_key import ApiKey
from neosynth.engine.models.base import Base, CreatedAtMixin, UTCDateTime, utcnow
from neosynth.engine.models.credential import PasswordCredential
from neosynth.engine.models.security import BackupCode, SecurityProfile, TempCode, TrustedDevice
from neosynth.engine.models.session import SESSION_TOKEN_PREFIX, UserSession
from neosynth.engine.models.user import User

ALL_MODELS: list[type[Base]] = [
    User,
    PasswordCredential,
    SecurityProfile,
    BackupCode,
    TempCode,
    TrustedDevice,
    UserSession,
    ApiKey,
]

__all__ = [
    "ALL_MODELS",
    "SESSION_TOKEN_PREFIX",
    "ApiKey",
    "BackupCode",
    "Base",
    "CreatedAtMixin",
    "PasswordCredential",
    "SecurityProfile",
    "TempCode",
    "TrustedDevice",
    "UTCDateTime",
    "User",
    "UserSession",
    "utcnow",
]
