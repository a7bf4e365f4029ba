from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Body, Query, Request
from fastapi.responses import JSONResponse

from lms_api.authorization import PERMISSION_SYSTEM_ADMIN
from lms_api.errors import ValidationFailedError
from lms_api.routes._deps import actor_from_request, require_permission, store_from_request, trace_id_from_request
from lms_api.schemas import (
    LookupCacheInvalidateRequest,
    LookupValueCreateRequest,
    LookupValueUpdateRequest,
    success_envelope,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v2/lookup-values", tags=["lookup-values"])


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


@router.get("")
def list_lookup_values(
    request: Request,
    category: str | None = Query(default=None),
    include_inactive: bool = Query(default=False),
):
    actor_from_request(request)
    items = store_from_request(request).lookup_values_repository.list(
        category=category,
        include_inactive=include_inactive,
    )
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/cache/stats")
def lookup_cache_stats(request: Request):
    require_permission(request, PERMISSION_SYSTEM_ADMIN)
    stats = store_from_request(request).lookup_validator.cache.stats()
    return success_envelope(stats, trace_id_from_request(request))


@router.post("/cache/invalidate")
def invalidate_lookup_cache(
    request: Request,
    payload: LookupCacheInvalidateRequest | None = Body(default=None),
):
    require_permission(request, PERMISSION_SYSTEM_ADMIN)
    category = payload.category if payload is not None else None
    store_from_request(request).lookup_validator.invalidate(category)
    return success_envelope({"invalidated": category or "*"}, trace_id_from_request(request))


@router.post("")
def create_lookup_value(payload: LookupValueCreateRequest, request: Request):
    require_permission(request, PERMISSION_SYSTEM_ADMIN)
    lms_store = store_from_request(request)
    now = _utcnow_iso()
    created = lms_store.lookup_values_repository.create(
        value={**payload.model_dump(), "created_at": now, "updated_at": now}
    )
    lms_store.lookup_validator.invalidate(payload.category)
    logger.info("lookup_value_created category=%s key=%s", payload.category, payload.key)
    return JSONResponse(status_code=201, content=success_envelope(created, trace_id_from_request(request)))


@router.put("/{category}/{key}")
def update_lookup_value(category: str, key: str, payload: LookupValueUpdateRequest, request: Request):
    require_permission(request, PERMISSION_SYSTEM_ADMIN)
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise ValidationFailedError("no lookup value fields to update")
    lms_store = store_from_request(request)
    updated = lms_store.lookup_values_repository.update(
        category=category,
        key=key,
        patch={**patch, "updated_at": _utcnow_iso()},
    )
    lms_store.lookup_validator.invalidate(category)
    logger.info("lookup_value_updated category=%s key=%s fields=%s", category, key, ",".join(sorted(patch)))
    return success_envelope(updated, trace_id_from_request(request))


@router.delete("/{category}/{key}")
def deactivate_lookup_value(category: str, key: str, request: Request):
    require_permission(request, PERMISSION_SYSTEM_ADMIN)
    lms_store = store_from_request(request)
    updated = lms_store.lookup_values_repository.update(
        category=category,
        key=key,
        patch={"is_active": False, "updated_at": _utcnow_iso()},
    )
    lms_store.lookup_validator.invalidate(category)
    logger.info("lookup_value_deactivated category=%s key=%s", category, key)
    return success_envelope(updated, trace_id_from_request(request))
