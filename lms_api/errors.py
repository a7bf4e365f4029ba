from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class NotFoundError(ApiError):
    def __init__(self, message: str, *, code: str = "RESOURCE_NOT_FOUND") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="validation",
            retryable=False,
            http_status=404,
        )


class InvalidTransitionError(ApiError):
    def __init__(self, message: str, *, code: str = "REPORT_JOB_TRANSITION_INVALID") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="business_rule",
            retryable=False,
            http_status=409,
        )


class ForbiddenError(ApiError):
    def __init__(self, message: str = "forbidden", *, code: str = "AUTH_FORBIDDEN") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="security_sensitive",
            retryable=False,
            http_status=403,
        )


class UnauthorizedError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(
            code="AUTH_UNAUTHORIZED",
            message=message,
            error_class="security_sensitive",
            retryable=False,
            http_status=401,
        )


class ConflictError(ApiError):
    """Lost a race on a conditional update; the caller may re-read and retry."""

    def __init__(self, message: str, *, code: str = "REPORT_JOB_CONFLICT") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="business_rule",
            retryable=True,
            http_status=409,
        )


class NotReadyError(ApiError):
    def __init__(self, message: str = "report is not ready for download") -> None:
        super().__init__(
            code="REPORT_NOT_READY",
            message=message,
            error_class="business_rule",
            retryable=True,
            http_status=409,
        )


class LookupStoreError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(
            code="LOOKUP_STORE_UNAVAILABLE",
            message=message,
            error_class="transient",
            retryable=True,
            http_status=503,
        )


class ValidationFailedError(ApiError):
    def __init__(self, message: str, *, errors: list[dict[str, str]] | None = None) -> None:
        super().__init__(
            code="REQ_VALIDATION_FAILED",
            message=message,
            error_class="validation",
            retryable=False,
            http_status=400,
        )
        self.errors = list(errors or [])
