from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from lms_api.routes._deps import actor_from_request, store_from_request, trace_id_from_request
from lms_api.schemas import LearningEventCreateRequest, success_envelope

router = APIRouter(prefix="/api/v2/learning-events", tags=["learning-events"])


@router.post("")
def create_learning_event(payload: LearningEventCreateRequest, request: Request):
    actor_from_request(request)
    event = store_from_request(request).learning_events.record(payload.model_dump())
    return JSONResponse(status_code=201, content=success_envelope(event, trace_id_from_request(request)))


@router.get("")
def list_learning_events(
    request: Request,
    learner_id: str | None = Query(default=None),
    event_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
):
    actor_from_request(request)
    items = store_from_request(request).learning_events.list(
        learner_id=learner_id,
        event_type=event_type,
        limit=limit,
    )
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))
