from __future__ import annotations

from fastapi import APIRouter, Request

from lms_api.errors import NotFoundError
from lms_api.routes._deps import store_from_request, trace_id_from_request
from lms_api.schemas import success_envelope

router = APIRouter(prefix="/api/v2/ai/schemas", tags=["ai-schemas"])


@router.get("")
def list_ai_schemas(request: Request):
    resources = store_from_request(request).schema_docs.supported_resources()
    return success_envelope(
        {"resources": resources, "links": {r: f"/api/v2/ai/schemas/{r}" for r in resources}},
        trace_id_from_request(request),
    )


@router.get("/{resource}")
def get_ai_schema(resource: str, request: Request):
    schema_docs = store_from_request(request).schema_docs
    document = schema_docs.get_schema(resource)
    if document is None:
        raise NotFoundError(
            f"schema not found for resource: {resource}; supported: {', '.join(schema_docs.supported_resources())}",
            code="SCHEMA_NOT_FOUND",
        )
    return success_envelope(document.as_dict(), trace_id_from_request(request))
