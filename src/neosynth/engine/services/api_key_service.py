"""ApiKey service: issuance, lookup, IP allow-lists, rate limits and usage."""

from __future__ import annotations

import asyncio
import enum
import ipaddress
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update

from neosynth.engine.models.api_key import ApiKey
from neosynth.engine.models.base import utcnow
from neosynth.engine.permissions import Role, default_permissions
from neosynth.engine.ratelimit import RateLimitResult, per_minute_and_hour
from neosynth.errors.definitions import (
    ErrAdminKeyRequiresAdmin,
    ErrApiKeyNotFound,
    ErrForbidden,
    ErrInvalidExpiresIn,
    ErrInvalidIpAllowList,
    ErrInvalidRole,
    ErrMissingFields,
)
from neosynth.utils.crypto import hash_api_key

if TYPE_CHECKING:
    from collections.abc import Sequence

    from neosynth.engine.client import AuthEngine

logger = logging.getLogger(__name__)
auth_debug = logging.getLogger("neosynth.auth")

API_KEY_SCHEME = "nsk"
API_KEY_PATTERN = re.compile(r"^nsk_(live|test)_[a-f0-9]{64}$")
KEY_ID_BYTES = 8
SECRET_BYTES = 24

EXPIRES_IN: dict[str, timedelta] = {
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}

MAX_PAGE_SIZE = 100


class ApiKeyPrefix(enum.StrEnum):
    """Environment tag embedded in every key."""

    LIVE = "live"
    TEST = "test"


@dataclass(frozen=True)
class GeneratedKey:
    """Freshly generated key material. ``full_key`` is shown to the caller once."""

    key_id: str
    full_key: str
    key_hash: str


def generate_api_key(prefix: ApiKeyPrefix | str = ApiKeyPrefix.TEST) -> GeneratedKey:
    """Generate ``nsk_{prefix}_{keyId}{secret}`` and its lookup digest."""
    prefix = ApiKeyPrefix(prefix)
    key_id = secrets.token_hex(KEY_ID_BYTES)
    secret = secrets.token_hex(SECRET_BYTES)
    full_key = f"{API_KEY_SCHEME}_{prefix.value}_{key_id}{secret}"
    return GeneratedKey(key_id=key_id, full_key=full_key, key_hash=hash_api_key(full_key))


def is_well_formed(full_key: str) -> bool:
    return bool(full_key) and API_KEY_PATTERN.match(full_key) is not None


def ip_allowed(client_ip: str | None, allow_list: Sequence[str] | None) -> bool:
    """Evaluate a client address against a key's allow-list.

    An empty list allows everything. ``*`` matches any address, CIDR entries
    match by network membership and any other entry must equal the address.
    """
    if not allow_list:
        return True
    if not client_ip:
        return False

    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        address = None

    for entry in allow_list:
        if entry == "*":
            return True
        if "/" in entry:
            if address is None:
                continue
            try:
                network = ipaddress.ip_network(entry, strict=False)
            except ValueError:
                continue
            if address.version == network.version and address in network:
                return True
        elif entry == client_ip:
            return True
    return False


def validate_ip_allow_list(entries: Sequence[str] | None) -> list[str]:
    """Validate an operator-supplied allow-list.

    Raises:
        NeoSynthError: If any entry is neither ``*``, an address nor a network.
    """
    validated: list[str] = []
    for raw in entries or []:
        entry = str(raw).strip()
        if entry == "*":
            validated.append(entry)
            continue
        try:
            if "/" in entry:
                ipaddress.ip_network(entry, strict=False)
            else:
                ipaddress.ip_address(entry)
        except ValueError as exc:
            raise ErrInvalidIpAllowList from exc
        validated.append(entry)
    return validated


class ApiKeyService:
    """Business logic for API keys.

    - Generate keys (plaintext returned once, SHA-256 digest stored)
    - Authenticate presented keys by digest equality
    - Enforce per-key dual sliding-window rate limits
    - Record usage in the background without blocking requests
    - Owner and admin management (list, update, deactivate, stats)
    """

    def __init__(self, engine: AuthEngine) -> None:
        self._engine = engine
        self._usage_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    async def create_api_key(
        self,
        *,
        owner_id: str,
        owner_is_admin: bool,
        name: str,
        role: str = Role.USER.value,
        expires_in: str | None = None,
        ip_allow_list: Sequence[str] | None = None,
    ) -> tuple[ApiKey, str]:
        """Create a key for *owner_id*.

        Args:
            owner_id: User that owns (and creates) the key.
            owner_is_admin: Whether the creator is an admin; only admins may
                create ``admin`` role keys.
            name: Human-readable label.
            role: ``user``, ``admin`` or ``service``.
            expires_in: ``30d``, ``90d``, ``1y`` or None for no expiry.
            ip_allow_list: Optional address and network allow-list.

        Returns:
            Tuple of (persisted ApiKey, full plaintext key).

        Raises:
            NeoSynthError: On invalid input or insufficient rights.
        """
        if not name or not name.strip():
            raise ErrMissingFields
        try:
            key_role = Role(role)
        except ValueError as exc:
            raise ErrInvalidRole from exc
        if key_role == Role.ADMIN and not owner_is_admin:
            raise ErrAdminKeyRequiresAdmin

        expires_at: datetime | None = None
        if expires_in is not None:
            ttl = EXPIRES_IN.get(expires_in)
            if ttl is None:
                raise ErrInvalidExpiresIn
            expires_at = utcnow() + ttl

        allow_list = validate_ip_allow_list(ip_allow_list)
        prefix = ApiKeyPrefix.LIVE if self._engine.config.auth.production else ApiKeyPrefix.TEST
        generated = generate_api_key(prefix)
        limits = self._engine.config.rate_limit

        record = ApiKey(
            key_id=generated.key_id,
            key_hash=generated.key_hash,
            user_id=owner_id,
            name=name.strip(),
            role=key_role.value,
            permissions=default_permissions(key_role),
            prefix=prefix.value,
            is_active=True,
            usage_count=0,
            rate_limit_per_minute=limits.default_per_minute,
            rate_limit_per_hour=limits.default_per_hour,
            ip_allow_list=allow_list,
            expires_at=expires_at,
            created_by=owner_id,
        )

        async with self._engine.datastore.session() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)

        logger.info("API key %s created for user %s (role=%s)", record.key_id, owner_id, role)
        return record, generated.full_key

    # ------------------------------------------------------------------
    # Authentication path
    # ------------------------------------------------------------------

    async def lookup(self, key_hash: str) -> ApiKey | None:
        """Find an active key by its digest."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(ApiKey).where(ApiKey.key_hash == key_hash, ApiKey.is_active.is_(True))
            )
            return result.scalar_one_or_none()

    async def authenticate(self, full_key: str) -> ApiKey | None:
        """Resolve a presented plaintext key to its active, unexpired record.

        Malformed keys are rejected before any hashing or datastore work.
        """
        if not is_well_formed(full_key):
            auth_debug.debug("Rejected malformed API key")
            return None

        record = await self.lookup(hash_api_key(full_key))
        if record is None:
            auth_debug.debug("No active API key for presented value")
            return None

        if record.expires_at is not None and record.expires_at <= utcnow():
            auth_debug.debug("API key %s expired at %s", record.key_id, record.expires_at)
            return None

        return record

    def check_rate_limit(self, record: ApiKey) -> RateLimitResult:
        """Apply the key's minute and hour windows."""
        limits = per_minute_and_hour(record.rate_limit_per_minute, record.rate_limit_per_hour)
        result = self._engine.rate_limiter.check(f"apikey:{record.key_id}", limits)
        if not result.allowed and self._engine.metrics is not None:
            self._engine.metrics.rate_limited.labels(scope="api_key").inc()
        return result

    async def record_usage(self, key_id: str) -> None:
        """Bump ``usage_count`` and ``last_used`` in one atomic update."""
        async with self._engine.datastore.session() as session:
            await session.execute(
                update(ApiKey)
                .where(ApiKey.key_id == key_id)
                .values(usage_count=ApiKey.usage_count + 1, last_used=utcnow())
            )
            await session.commit()

    def record_usage_in_background(self, key_id: str) -> None:
        """Schedule :meth:`record_usage` without awaiting it.

        Failures are logged and counted, never raised to the request.
        """
        task = asyncio.get_running_loop().create_task(self._record_usage_safely(key_id))
        self._usage_tasks.add(task)
        task.add_done_callback(self._usage_tasks.discard)

    async def _record_usage_safely(self, key_id: str) -> None:
        try:
            await self.record_usage(key_id)
        except Exception:
            logger.exception("Failed to record usage for API key %s", key_id)
            if self._engine.metrics is not None:
                self._engine.metrics.usage_record_failures.inc()

    async def drain_usage_tasks(self) -> None:
        """Wait for outstanding usage updates (shutdown and tests)."""
        if self._usage_tasks:
            await asyncio.gather(*list(self._usage_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def get(self, key_id: str) -> ApiKey | None:
        """Look up an active key by its public identifier."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(ApiKey).where(ApiKey.key_id == key_id, ApiKey.is_active.is_(True))
            )
            return result.scalar_one_or_none()

    async def _owned(self, key_id: str, actor_id: str, *, actor_is_admin: bool) -> ApiKey:
        record = await self.get(key_id)
        if record is None:
            raise ErrApiKeyNotFound
        if record.user_id != actor_id and not actor_is_admin:
            raise ErrForbidden
        return record

    async def list_for_user(self, user_id: str) -> list[ApiKey]:
        """List the user's active keys, newest first."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(ApiKey)
                .where(ApiKey.user_id == user_id, ApiKey.is_active.is_(True))
                .order_by(ApiKey.created_at.desc())
            )
            return list(result.scalars().all())

    async def deactivate(self, key_id: str, actor_id: str, *, actor_is_admin: bool) -> None:
        """Soft-delete a key. Owners and admins only.

        Raises:
            NeoSynthError: If the key is missing or the actor may not touch it.
        """
        await self._owned(key_id, actor_id, actor_is_admin=actor_is_admin)
        async with self._engine.datastore.session() as session:
            await session.execute(
                update(ApiKey).where(ApiKey.key_id == key_id).values(is_active=False)
            )
            await session.commit()
        self._engine.rate_limiter.reset(f"apikey:{key_id}")
        logger.info("API key %s deactivated by %s", key_id, actor_id)

    async def update(
        self,
        key_id: str,
        actor_id: str,
        *,
        actor_is_admin: bool,
        name: str | None = None,
        rate_limit: dict[str, int] | None = None,
        ip_allow_list: Sequence[str] | None = None,
    ) -> ApiKey:
        """Update mutable fields. Rate limits are clamped to the configured caps."""
        record = await self._owned(key_id, actor_id, actor_is_admin=actor_is_admin)
        caps = self._engine.config.rate_limit
        values: dict[str, Any] = {}

        if name is not None and name.strip():
            values["name"] = name.strip()
        if rate_limit:
            per_minute = rate_limit.get("requestsPerMinute")
            per_hour = rate_limit.get("requestsPerHour")
            if per_minute is not None:
                values["rate_limit_per_minute"] = max(1, min(int(per_minute), caps.max_per_minute))
            if per_hour is not None:
                values["rate_limit_per_hour"] = max(1, min(int(per_hour), caps.max_per_hour))
        if ip_allow_list is not None:
            values["ip_allow_list"] = validate_ip_allow_list(ip_allow_list)

        if not values:
            return record

        async with self._engine.datastore.session() as session:
            await session.execute(update(ApiKey).where(ApiKey.key_id == key_id).values(**values))
            await session.commit()
            result = await session.execute(select(ApiKey).where(ApiKey.key_id == key_id))
            return result.scalar_one()

    async def stats(self, key_id: str, actor_id: str, *, actor_is_admin: bool) -> dict[str, Any]:
        """Usage summary for one key."""
        record = await self._owned(key_id, actor_id, actor_is_admin=actor_is_admin)
        now = utcnow()
        age_days = max(1, (now - record.created_at).days) if record.created_at else 1
        return {
            "keyId": record.key_id,
            "name": record.name,
            "usageCount": record.usage_count,
            "lastUsed": record.last_used,
            "createdAt": record.created_at,
            "averageDailyUsage": round(record.usage_count / age_days, 2),
            "rateLimit": record.rate_limit,
            "isExpired": record.expires_at is not None and record.expires_at <= now,
        }

    async def list_all(self, *, page: int = 1, limit: int = 50) -> tuple[list[ApiKey], int]:
        """Admin listing of every key, paginated.

        Returns:
            Tuple of (keys on this page, total key count).
        """
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        async with self._engine.datastore.session() as session:
            total = (await session.execute(select(func.count()).select_from(ApiKey))).scalar_one()
            result = await session.execute(
                select(ApiKey)
                .order_by(ApiKey.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars().all()), total

    async def sweep_expired(self) -> int:
        """Hard-delete keys past their ``expires_at``."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                delete(ApiKey).where(ApiKey.expires_at.is_not(None), ApiKey.expires_at < utcnow())
            )
            await session.commit()
        return result.rowcount
