from __future__ import annotations

import logging
import os
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from lms_api.authorization import PERMISSION_SYSTEM_ADMIN, Actor
from lms_api.errors import ApiError, ValidationFailedError
from lms_api.routes import ai_schemas, internal, learning_events, lookup_values, report_jobs
from lms_api.routes._deps import error_response, request_id_from_request, trace_id_from_request
from lms_api.schemas import success_envelope
from lms_api.security import JwtSecurityConfig, parse_and_validate_bearer_token, redact_sensitive
from lms_api.store import LmsStore, create_store_from_env

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v2/"
_PUBLIC_PATHS = ("/api/v2/health", "/api/v2/ai/schemas")
_ANONYMOUS_ACTOR = Actor(subject="anonymous", permissions=frozenset({PERMISSION_SYSTEM_ADMIN}))


def _requires_bearer_token(path: str) -> bool:
    if not path.startswith(API_PREFIX) or path.startswith("/api/v2/internal/"):
        return False
    return not any(path == p or path.startswith(p + "/") for p in _PUBLIC_PATHS)


def create_app(lms_store: LmsStore | None = None) -> FastAPI:
    app = FastAPI(title="LMS Reports API", version="0.1.0")
    security_cfg = JwtSecurityConfig.from_env()
    app.state.security_cfg = security_cfg
    app.state.lms_store = lms_store if lms_store is not None else create_store_from_env()
    if not security_cfg.enabled:
        logger.warning("jwt_auth_disabled requests run as actor=%s", _ANONYMOUS_ACTOR.subject)

    cors_origins = os.environ.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        request.state.actor = None
        try:
            if _requires_bearer_token(request.url.path):
                if security_cfg.enabled:
                    request.state.actor = parse_and_validate_bearer_token(
                        authorization=request.headers.get("Authorization"),
                        cfg=security_cfg,
                    )
                else:
                    request.state.actor = _ANONYMOUS_ACTOR
            response = await call_next(request)
        except ApiError as exc:
            logger.warning(
                "request_rejected code=%s path=%s headers=%s",
                exc.code,
                request.url.path,
                redact_sensitive(dict(request.headers.items())),
            )
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
            )
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.code in {"AUTH_UNAUTHORIZED", "AUTH_FORBIDDEN"}:
            logger.warning("security_blocked code=%s path=%s detail=%s", exc.code, request.url.path, exc.message)
        details = exc.errors if isinstance(exc, ValidationFailedError) and exc.errors else None
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
            details=details,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(x) for x in err.get("loc", ()) if x != "body"),
                "code": str(err.get("type", "invalid")),
                "message": str(err.get("msg", "invalid value")),
            }
            for err in exc.errors()
        ]
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
            details=details,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    @app.get("/api/v2/health")
    def health_api(request: Request) -> dict[str, object]:
        lms_store = request.app.state.lms_store
        return success_envelope(
            {"status": "ok", "store_backend": lms_store.backend},
            trace_id_from_request(request),
        )

    for module in (report_jobs, internal, lookup_values, ai_schemas, learning_events):
        app.include_router(module.router)

    return app


app = create_app()
