from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ReportOutput(BaseModel):
    format: Literal["pdf", "csv", "xlsx", "json", "html"] = "json"


class CreateReportJobRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    report_type: str = Field(min_length=1, max_length=100)
    parameters: dict[str, Any] = Field(default_factory=dict)
    output: ReportOutput = Field(default_factory=ReportOutput)
    priority: Literal["low", "normal", "high", "critical"] = "normal"


class CancelReportJobRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ReportProgressRequest(BaseModel):
    percentage: float = Field(ge=0, le=100)
    current_step: str = Field(min_length=1, max_length=200)
    records_processed: int | None = Field(default=None, ge=0)
    total_records: int | None = Field(default=None, ge=0)


class ReportSucceedRequest(BaseModel):
    artifact_ref: str = Field(min_length=1)


class ReportFailRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class LookupValueCreateRequest(BaseModel):
    category: str = Field(min_length=1, max_length=100, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    key: str = Field(min_length=1, max_length=100)
    display_name: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    is_active: bool = True
    sort_order: int = 0


class LookupValueUpdateRequest(BaseModel):
    display_name: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    is_active: bool | None = None
    sort_order: int | None = None


class LookupCacheInvalidateRequest(BaseModel):
    category: str | None = None


class LearningEventCreateRequest(BaseModel):
    learner_id: str
    event_type: str
    course_id: str | None = None
    content_id: str | None = None
    content_type: str | None = None
    session_id: str | None = None
    timestamp: str | None = None
    duration: float | None = None
    score: float | None = None
    data: dict[str, Any] = Field(default_factory=dict)


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: Any = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
