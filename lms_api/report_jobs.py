"""Report job lifecycle.

A job moves ``pending -> running -> completed | failed`` under a producer, and
actors may cancel a live job or retry a failed one. Every mutation re-reads the
record and writes through ``store.conditional_update`` keyed on the status the
guard was checked against, so a concurrent writer surfaces as ``ConflictError``
instead of a lost update. No job state is cached here.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from lms_api.authorization import Actor, ReportJobPolicy, default_report_job_policy
from lms_api.document_validation import REPORT_JOB_RULES, ensure_valid_document
from lms_api.errors import ConflictError, ForbiddenError, InvalidTransitionError, NotFoundError, NotReadyError
from lms_api.errors import ValidationFailedError
from lms_api.lookup_validator import LookupValidator

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

REPORT_JOB_STATUSES = frozenset({STATUS_PENDING, STATUS_RUNNING, STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED})

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    STATUS_PENDING: {STATUS_RUNNING, STATUS_CANCELLED},
    STATUS_RUNNING: {STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED},
    STATUS_FAILED: {STATUS_PENDING},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
}


class ReportJobStore(Protocol):
    def create(self, *, job: dict[str, Any]) -> dict[str, Any]: ...

    def read(self, *, job_id: str) -> dict[str, Any] | None: ...

    def conditional_update(
        self,
        *,
        job_id: str,
        expected_status: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]: ...

    def list(self, **filters: Any) -> tuple[list[dict[str, Any]], int]: ...


@dataclass(frozen=True)
class ReportJob:
    id: str
    owner_id: str
    type: str
    status: str
    created_at: str
    updated_at: str
    parameters: dict[str, Any] = field(default_factory=dict)
    attempt_count: int = 1
    name: str = ""
    description: str | None = None
    output_format: str = "json"
    priority: str = "normal"
    started_at: str | None = None
    completed_at: str | None = None
    cancelled_at: str | None = None
    artifact_ref: str | None = None
    failure_reason: str | None = None
    cancel_reason: str | None = None
    progress: dict[str, Any] | None = None

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> "ReportJob":
        return cls(
            id=row["job_id"],
            owner_id=row["owner_id"],
            type=row["report_type"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            parameters=dict(row.get("parameters") or {}),
            attempt_count=int(row.get("attempt_count", 1)),
            name=row.get("name") or "",
            description=row.get("description"),
            output_format=row.get("output_format") or "json",
            priority=row.get("priority") or "normal",
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            cancelled_at=row.get("cancelled_at"),
            artifact_ref=row.get("artifact_ref"),
            failure_reason=row.get("failure_reason"),
            cancel_reason=row.get("cancel_reason"),
            progress=dict(row["progress"]) if row.get("progress") else None,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "report_type": self.type,
            "status": self.status,
            "priority": self.priority,
            "owner_id": self.owner_id,
            "parameters": self.parameters,
            "output": {"format": self.output_format, "artifact_ref": self.artifact_ref},
            "attempt_count": self.attempt_count,
            "progress": self.progress,
            "failure_reason": self.failure_reason,
            "cancel_reason": self.cancel_reason,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "cancelled_at": self.cancelled_at,
        }


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def _new_job_id() -> str:
    return f"rjob_{uuid.uuid4().hex[:16]}"


class ReportJobService:
    def __init__(
        self,
        *,
        store: ReportJobStore,
        policy: ReportJobPolicy | None = None,
        lookup_validator: LookupValidator | None = None,
        max_attempts: int | None = None,
        now: Callable[[], str] = _utcnow_iso,
        id_factory: Callable[[], str] = _new_job_id,
    ) -> None:
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._policy = policy or default_report_job_policy()
        self._lookup_validator = lookup_validator
        self._max_attempts = max_attempts
        self._now = now
        self._id_factory = id_factory

    @property
    def max_attempts(self) -> int | None:
        return self._max_attempts

    def create(
        self,
        *,
        owner_id: str,
        report_type: str,
        parameters: dict[str, Any] | None = None,
        name: str | None = None,
        description: str | None = None,
        output_format: str = "json",
        priority: str = "normal",
    ) -> ReportJob:
        if not owner_id.strip():
            raise ValidationFailedError("owner_id is required")
        record_name = name if name is not None else report_type
        ensure_valid_document(
            {
                "report_type": report_type,
                "name": record_name,
                "description": description,
                "output_format": output_format,
                "priority": priority,
            },
            REPORT_JOB_RULES,
            lookup_validator=self._lookup_validator,
            message="invalid report job",
        )
        now = self._now()
        row = self._store.create(
            job={
                "job_id": self._id_factory(),
                "owner_id": owner_id,
                "report_type": report_type,
                "name": record_name,
                "description": description,
                "parameters": dict(parameters or {}),
                "output_format": output_format,
                "priority": priority,
                "status": STATUS_PENDING,
                "attempt_count": 1,
                "artifact_ref": None,
                "failure_reason": None,
                "cancel_reason": None,
                "progress": None,
                "created_at": now,
                "updated_at": now,
                "started_at": None,
                "completed_at": None,
                "cancelled_at": None,
            }
        )
        job = ReportJob.from_record(row)
        logger.info("report_job_created job_id=%s type=%s owner_id=%s", job.id, job.type, job.owner_id)
        return job

    def get(self, job_id: str, actor: Actor | None = None) -> ReportJob:
        job = self._read(job_id)
        if actor is not None and not self._policy.can_download(actor, job):
            raise ForbiddenError("not allowed to read this report job")
        return job

    def list(
        self,
        *,
        statuses: list[str] | None = None,
        report_types: list[str] | None = None,
        owner_id: str | None = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        unknown = set(statuses or []) - REPORT_JOB_STATUSES
        if unknown:
            raise ValidationFailedError(f"unknown report job status: {sorted(unknown)[0]}")
        page = max(1, int(page))
        limit = min(max(int(limit), 1), 100)
        rows, total = self._store.list(
            statuses=statuses or None,
            report_types=report_types or None,
            owner_id=owner_id,
            offset=(page - 1) * limit,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return {
            "items": [ReportJob.from_record(r) for r in rows],
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def start(self, job_id: str) -> ReportJob:
        job = self._read(job_id)
        now = self._now()
        return self._transition(
            job,
            event="start",
            to_status=STATUS_RUNNING,
            patch={"started_at": now, "progress": {"percentage": 0, "current_step": "started"}},
        )

    def report_progress(
        self,
        job_id: str,
        *,
        percentage: float,
        current_step: str,
        records_processed: int | None = None,
        total_records: int | None = None,
    ) -> ReportJob:
        if not 0 <= percentage <= 100:
            raise ValidationFailedError("percentage must be between 0 and 100")
        job = self._read(job_id)
        if job.status != STATUS_RUNNING:
            raise InvalidTransitionError(f"cannot report progress for a {job.status} report job")
        progress: dict[str, Any] = {"percentage": percentage, "current_step": current_step}
        if records_processed is not None:
            progress["records_processed"] = records_processed
        if total_records is not None:
            progress["total_records"] = total_records
        row = self._store.conditional_update(
            job_id=job.id,
            expected_status=STATUS_RUNNING,
            patch={"progress": progress, "updated_at": self._now()},
        )
        return ReportJob.from_record(row)

    def succeed(self, job_id: str, *, artifact_ref: str) -> ReportJob:
        if not artifact_ref or not artifact_ref.strip():
            raise InvalidTransitionError(
                "artifact reference is required to complete a report job",
                code="REPORT_JOB_ARTIFACT_REQUIRED",
            )
        job = self._read(job_id)
        progress = dict(job.progress or {})
        progress.update({"percentage": 100, "current_step": "completed"})
        return self._transition(
            job,
            event="succeed",
            to_status=STATUS_COMPLETED,
            patch={"artifact_ref": artifact_ref, "completed_at": self._now(), "progress": progress},
        )

    def fail(self, job_id: str, *, reason: str) -> ReportJob:
        if not reason or not reason.strip():
            raise InvalidTransitionError(
                "failure reason is required to fail a report job",
                code="REPORT_JOB_FAILURE_REASON_REQUIRED",
            )
        job = self._read(job_id)
        return self._transition(job, event="fail", to_status=STATUS_FAILED, patch={"failure_reason": reason})

    def cancel(self, job_id: str, actor: Actor, *, reason: str | None = None) -> ReportJob:
        job = self._read(job_id)
        if not self._policy.can_cancel(actor, job):
            raise ForbiddenError("not allowed to cancel this report job")
        return self._transition(
            job,
            event="cancel",
            to_status=STATUS_CANCELLED,
            patch={"cancelled_at": self._now(), "cancel_reason": reason},
        )

    def retry(self, job_id: str, actor: Actor) -> ReportJob:
        job = self._read(job_id)
        if not self._policy.can_retry(actor, job):
            raise ForbiddenError("not allowed to retry this report job")
        if job.status == STATUS_FAILED and self._max_attempts is not None and job.attempt_count >= self._max_attempts:
            raise InvalidTransitionError(
                f"report job reached the retry limit of {self._max_attempts} attempts",
                code="REPORT_JOB_RETRY_LIMIT",
            )
        return self._transition(
            job,
            event="retry",
            to_status=STATUS_PENDING,
            patch={
                "attempt_count": job.attempt_count + 1,
                "failure_reason": None,
                "artifact_ref": None,
                "started_at": None,
                "completed_at": None,
                "progress": None,
            },
        )

    def download(self, job_id: str, actor: Actor) -> str:
        job = self._read(job_id)
        if not self._policy.can_download(actor, job):
            raise ForbiddenError("not allowed to download this report")
        if job.status != STATUS_COMPLETED or not job.artifact_ref:
            raise NotReadyError(f"report job {job.id} is {job.status}; download is available once completed")
        return job.artifact_ref

    def _read(self, job_id: str) -> ReportJob:
        row = self._store.read(job_id=job_id)
        if row is None:
            raise NotFoundError(f"report job not found: {job_id}", code="REPORT_JOB_NOT_FOUND")
        return ReportJob.from_record(row)

    def _transition(self, job: ReportJob, *, event: str, to_status: str, patch: dict[str, Any]) -> ReportJob:
        if to_status not in ALLOWED_TRANSITIONS.get(job.status, set()):
            raise InvalidTransitionError(f"invalid transition: {job.status} -> {to_status} ({event})")
        try:
            row = self._store.conditional_update(
                job_id=job.id,
                expected_status=job.status,
                patch={**patch, "status": to_status, "updated_at": self._now()},
            )
        except ConflictError:
            logger.warning(
                "report_job_transition_conflict job_id=%s event=%s expected=%s",
                job.id,
                event,
                job.status,
            )
            raise
        logger.info(
            "report_job_transition job_id=%s event=%s from=%s to=%s attempt=%s",
            job.id,
            event,
            job.status,
            to_status,
            row.get("attempt_count"),
        )
        return ReportJob.from_record(row)
