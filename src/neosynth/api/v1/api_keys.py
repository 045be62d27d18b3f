"""API key management endpoints.

Owners create, list, update and deactivate their keys; admins may manage
any key and list all of them.
"""

from __future__ import annotations

import math
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Path, Query

from neosynth.api.dependencies import get_engine, require_admin, require_user
from neosynth.api.middleware.auth import Principal  # noqa: TC001
from neosynth.api.v1.schemas import (
    ApiKeyCreateRequest,
    ApiKeyCreateResponse,
    ApiKeyListAllResponse,
    ApiKeyResponse,
    ApiKeyUpdateRequest,
    PaginationSchema,
    RateLimitSchema,
)
from neosynth.engine.client import AuthEngine  # noqa: TC001
from neosynth.engine.services.api_key_service import MAX_PAGE_SIZE

router = APIRouter(prefix="/keys", tags=["api_keys"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _key_fields(record: Any, *, include_owner: bool = False) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "key_id": record.key_id,
        "name": record.name,
        "role": record.role,
        "permissions": list(record.permissions or []),
        "prefix": record.prefix,
        "is_active": record.is_active,
        "last_used": record.last_used,
        "usage_count": record.usage_count,
        "rate_limit": RateLimitSchema(
            requests_per_minute=record.rate_limit_per_minute,
            requests_per_hour=record.rate_limit_per_hour,
        ),
        "ip_whitelist": list(record.ip_allow_list or []),
        "expires_at": record.expires_at,
        "created_at": record.created_at,
    }
    if include_owner:
        fields["user_id"] = record.user_id
        fields["created_by"] = record.created_by
    return fields


def _key_resp(record: Any, *, include_owner: bool = False) -> dict:
    return ApiKeyResponse(**_key_fields(record, include_owner=include_owner)).dump(exclude_none=False)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("", status_code=201)
async def create_api_key(
    body: ApiKeyCreateRequest,
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Create a key; the plaintext is returned only in this response."""
    record, full_key = await engine.api_keys.create_api_key(
        owner_id=principal.id,
        owner_is_admin=principal.is_admin,
        name=body.name,
        role=body.role,
        expires_in=body.expires_in,
        ip_allow_list=body.ip_whitelist,
    )
    return ApiKeyCreateResponse(**_key_fields(record), api_key=full_key).dump(exclude_none=False)


@router.get("")
async def list_api_keys(
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """List the caller's active keys (never the hash)."""
    keys = await engine.api_keys.list_for_user(principal.id)
    return {"apiKeys": [_key_resp(k) for k in keys]}


@router.get("/admin/all")
async def list_all_api_keys(
    principal: Annotated[Principal, Depends(require_admin)],
    engine: Annotated[AuthEngine, Depends(get_engine)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 50,
) -> dict:
    """Admin: every key, paginated."""
    keys, total = await engine.api_keys.list_all(page=page, limit=limit)
    return ApiKeyListAllResponse(
        api_keys=[ApiKeyResponse(**_key_fields(k, include_owner=True)) for k in keys],
        pagination=PaginationSchema(
            page=page, limit=limit, total=total, pages=math.ceil(total / limit) if total else 0
        ),
    ).dump(exclude_none=False)


@router.delete("/{keyId}")
async def delete_api_key(
    key_id: Annotated[str, Path(alias="keyId")],
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Deactivate a key (owner or admin)."""
    await engine.api_keys.deactivate(key_id, principal.id, actor_is_admin=principal.is_admin)
    return {"message": "API key deleted successfully"}


@router.put("/{keyId}")
async def update_api_key(
    key_id: Annotated[str, Path(alias="keyId")],
    body: ApiKeyUpdateRequest,
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Rename, re-limit or re-scope a key (owner or admin)."""
    rate_limit = None
    if body.rate_limit is not None:
        rate_limit = {
            k: v
            for k, v in body.rate_limit.model_dump(by_alias=True).items()
            if v is not None
        }
    record = await engine.api_keys.update(
        key_id,
        principal.id,
        actor_is_admin=principal.is_admin,
        name=body.name,
        rate_limit=rate_limit,
        ip_allow_list=body.ip_whitelist,
    )
    return {"message": "API key updated successfully", "apiKey": _key_resp(record)}


@router.get("/{keyId}/stats")
async def api_key_stats(
    key_id: Annotated[str, Path(alias="keyId")],
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[AuthEngine, Depends(get_engine)],
) -> dict:
    """Usage summary for one key (owner or admin)."""
    stats = await engine.api_keys.stats(key_id, principal.id, actor_is_admin=principal.is_admin)
    return {
        **stats,
        "lastUsed": stats["lastUsed"].isoformat() if stats["lastUsed"] else None,
        "createdAt": stats["createdAt"].isoformat() if stats["createdAt"] else None,
    }
