from __future__ import annotations

import mimetypes
from pathlib import Path

from fastapi import APIRouter, Body, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from lms_api.authorization import PERMISSION_REPORTS_CREATE, PERMISSION_REPORTS_READ
from lms_api.errors import NotFoundError, ValidationFailedError
from lms_api.routes._deps import (
    actor_from_request,
    require_permission,
    store_from_request,
    trace_id_from_request,
)
from lms_api.schemas import CancelReportJobRequest, CreateReportJobRequest, success_envelope

router = APIRouter(prefix="/api/v2/reports/jobs", tags=["report-jobs"])

_SORT_FIELDS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "status": "status",
    "priority": "priority",
}


def _split(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [x.strip() for x in raw.split(",") if x.strip()]


@router.post("")
def create_report_job(payload: CreateReportJobRequest, request: Request):
    actor = require_permission(request, PERMISSION_REPORTS_CREATE)
    job = store_from_request(request).report_jobs.create(
        owner_id=actor.subject,
        report_type=payload.report_type,
        parameters=payload.parameters,
        name=payload.name,
        description=payload.description,
        output_format=payload.output.format,
        priority=payload.priority,
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(
            {"id": job.id, "status": job.status, "created_at": job.created_at},
            trace_id_from_request(request),
            message="report job created",
        ),
    )


@router.get("")
def list_report_jobs(
    request: Request,
    status: str | None = Query(default=None),
    report_type: str | None = Query(default=None),
    requested_by: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: str = Query(default="createdAt"),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
):
    require_permission(request, PERMISSION_REPORTS_READ)
    sort_column = _SORT_FIELDS.get(sort_by)
    if sort_column is None:
        raise ValidationFailedError(f"unsupported sort_by: {sort_by}")
    result = store_from_request(request).report_jobs.list(
        statuses=_split(status),
        report_types=_split(report_type),
        owner_id=requested_by,
        page=page,
        limit=limit,
        sort_by=sort_column,
        sort_order=sort_order,
    )
    data = {
        "items": [job.as_dict() for job in result["items"]],
        "pagination": {
            "page": result["page"],
            "limit": result["limit"],
            "total": result["total"],
            "total_pages": result["total_pages"],
        },
    }
    return success_envelope(data, trace_id_from_request(request))


@router.get("/{job_id}")
def get_report_job(job_id: str, request: Request):
    job = store_from_request(request).report_jobs.get(job_id, actor_from_request(request))
    return success_envelope(job.as_dict(), trace_id_from_request(request))


@router.post("/{job_id}/cancel")
def cancel_report_job(
    job_id: str,
    request: Request,
    payload: CancelReportJobRequest | None = Body(default=None),
):
    reason = payload.reason if payload is not None else None
    job = store_from_request(request).report_jobs.cancel(job_id, actor_from_request(request), reason=reason)
    return success_envelope(
        {"id": job.id, "status": job.status, "cancelled_at": job.cancelled_at},
        trace_id_from_request(request),
        message="report job cancelled",
    )


@router.post("/{job_id}/retry")
def retry_report_job(job_id: str, request: Request):
    job = store_from_request(request).report_jobs.retry(job_id, actor_from_request(request))
    return JSONResponse(
        status_code=202,
        content=success_envelope(
            {"id": job.id, "status": job.status, "attempt_count": job.attempt_count},
            trace_id_from_request(request),
            message="report job queued for retry",
        ),
    )


@router.get("/{job_id}/download")
def download_report(job_id: str, request: Request):
    artifact_ref = store_from_request(request).report_jobs.download(job_id, actor_from_request(request))
    if artifact_ref.startswith(("http://", "https://")):
        return RedirectResponse(artifact_ref, status_code=307)
    if "://" not in artifact_ref:
        return _local_artifact_response(Path(artifact_ref))
    return success_envelope({"id": job_id, "artifact_ref": artifact_ref}, trace_id_from_request(request))


def _local_artifact_response(path: Path) -> Response:
    if not path.is_file():
        raise NotFoundError("report artifact not found", code="REPORT_ARTIFACT_MISSING")
    content_type, _ = mimetypes.guess_type(path.name)
    return Response(
        content=path.read_bytes(),
        media_type=content_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{path.name}"'},
    )
