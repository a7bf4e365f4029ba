"""Producer-facing transitions. Callers authenticate with the shared ``x-internal-token``."""

from __future__ import annotations

from fastapi import APIRouter, Header, Request

from lms_api.routes._deps import require_internal_token, store_from_request, trace_id_from_request
from lms_api.schemas import ReportFailRequest, ReportProgressRequest, ReportSucceedRequest, success_envelope

router = APIRouter(prefix="/api/v2/internal/reports/jobs", tags=["internal"])


def _job_summary(job) -> dict[str, object]:
    return {
        "id": job.id,
        "status": job.status,
        "attempt_count": job.attempt_count,
        "progress": job.progress,
    }


@router.post("/{job_id}/start")
def internal_start_report_job(
    job_id: str,
    request: Request,
    x_internal_token: str | None = Header(default=None, alias="x-internal-token"),
):
    require_internal_token(request, x_internal_token)
    job = store_from_request(request).report_jobs.start(job_id)
    return success_envelope(_job_summary(job), trace_id_from_request(request))


@router.post("/{job_id}/progress")
def internal_report_progress(
    job_id: str,
    payload: ReportProgressRequest,
    request: Request,
    x_internal_token: str | None = Header(default=None, alias="x-internal-token"),
):
    require_internal_token(request, x_internal_token)
    job = store_from_request(request).report_jobs.report_progress(
        job_id,
        percentage=payload.percentage,
        current_step=payload.current_step,
        records_processed=payload.records_processed,
        total_records=payload.total_records,
    )
    return success_envelope(_job_summary(job), trace_id_from_request(request))


@router.post("/{job_id}/succeed")
def internal_succeed_report_job(
    job_id: str,
    payload: ReportSucceedRequest,
    request: Request,
    x_internal_token: str | None = Header(default=None, alias="x-internal-token"),
):
    require_internal_token(request, x_internal_token)
    job = store_from_request(request).report_jobs.succeed(job_id, artifact_ref=payload.artifact_ref)
    return success_envelope({**_job_summary(job), "artifact_ref": job.artifact_ref}, trace_id_from_request(request))


@router.post("/{job_id}/fail")
def internal_fail_report_job(
    job_id: str,
    payload: ReportFailRequest,
    request: Request,
    x_internal_token: str | None = Header(default=None, alias="x-internal-token"),
):
    require_internal_token(request, x_internal_token)
    job = store_from_request(request).report_jobs.fail(job_id, reason=payload.reason)
    return success_envelope(
        {**_job_summary(job), "failure_reason": job.failure_reason},
        trace_id_from_request(request),
    )
