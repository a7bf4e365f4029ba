from __future__ import annotations

import hmac
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from lms_api.authorization import Actor
from lms_api.errors import ForbiddenError, UnauthorizedError
from lms_api.schemas import error_envelope
from lms_api.store import LmsStore


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
    details: object = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
            details=details,
        ),
    )


def store_from_request(request: Request) -> LmsStore:
    return request.app.state.lms_store


def actor_from_request(request: Request) -> Actor:
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise UnauthorizedError("authentication required")
    return actor


def require_permission(request: Request, permission: str) -> Actor:
    actor = actor_from_request(request)
    if not actor.has(permission):
        raise ForbiddenError(f"missing permission: {permission}")
    return actor


def require_internal_token(request: Request, token: str | None) -> None:
    expected = request.app.state.security_cfg.internal_token
    if not expected or not token or not hmac.compare_digest(expected, token):
        raise ForbiddenError("internal endpoint forbidden")
