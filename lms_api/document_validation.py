"""Field-level validation for documents whose rules mix static limits and lookup categories."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from lms_api.errors import ValidationFailedError
from lms_api.lookup_validator import LookupValidator

ACTIVITY_EVENT_CATEGORY = "activity-event"
REPORT_TYPE_CATEGORY = "report-type"


@dataclass(frozen=True)
class FieldRule:
    name: str
    required: bool = False
    kind: type | tuple[type, ...] | None = None
    min_length: int | None = None
    max_length: int | None = None
    minimum: float | None = None
    maximum: float | None = None
    choices: frozenset[str] | None = None
    lookup_category: str | None = None


def _error(field: str, code: str, message: str) -> dict[str, str]:
    return {"field": field, "code": code, "message": message}


def _check_static(rule: FieldRule, value: Any) -> dict[str, str] | None:
    if rule.kind is not None and (isinstance(value, bool) or not isinstance(value, rule.kind)):
        return _error(rule.name, "type", f"{rule.name} has an invalid type")
    if isinstance(value, str):
        if rule.min_length is not None and len(value.strip()) < rule.min_length:
            return _error(rule.name, "min_length", f"{rule.name} must be at least {rule.min_length} characters")
        if rule.max_length is not None and len(value) > rule.max_length:
            return _error(rule.name, "max_length", f"{rule.name} cannot exceed {rule.max_length} characters")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if rule.minimum is not None and value < rule.minimum:
            return _error(rule.name, "minimum", f"{rule.name} cannot be less than {rule.minimum:g}")
        if rule.maximum is not None and value > rule.maximum:
            return _error(rule.name, "maximum", f"{rule.name} cannot exceed {rule.maximum:g}")
    if rule.choices is not None and value not in rule.choices:
        return _error(rule.name, "enum", f"{rule.name} must be one of: {', '.join(sorted(rule.choices))}")
    return None


def validate_document(
    document: Mapping[str, Any],
    rules: tuple[FieldRule, ...],
    *,
    lookup_validator: LookupValidator | None = None,
) -> list[dict[str, str]]:
    """Return one error per failing field; lookup checks run only for statically valid values.

    Lookup store failures are not converted into field errors, they propagate as
    ``LookupStoreError``.
    """
    errors: list[dict[str, str]] = []
    for rule in rules:
        value = document.get(rule.name)
        if value is None:
            if rule.required:
                errors.append(_error(rule.name, "required", f"{rule.name} is required"))
            continue
        static_error = _check_static(rule, value)
        if static_error is not None:
            errors.append(static_error)
            continue
        if rule.lookup_category and lookup_validator is not None:
            if not lookup_validator.is_valid(rule.lookup_category, str(value)):
                errors.append(
                    _error(
                        rule.name,
                        "lookup",
                        f'invalid {rule.name}: "{value}" is not an active {rule.lookup_category} value',
                    )
                )
    return errors


def ensure_valid_document(
    document: Mapping[str, Any],
    rules: tuple[FieldRule, ...],
    *,
    lookup_validator: LookupValidator | None = None,
    message: str = "invalid payload",
) -> None:
    errors = validate_document(document, rules, lookup_validator=lookup_validator)
    if errors:
        raise ValidationFailedError(f"{message}: {errors[0]['message']}", errors=errors)


LEARNING_EVENT_RULES = (
    FieldRule("learner_id", required=True, kind=str, min_length=1),
    FieldRule("event_type", required=True, kind=str, min_length=1, lookup_category=ACTIVITY_EVENT_CATEGORY),
    FieldRule(
        "content_type",
        kind=str,
        choices=frozenset({"scorm", "video", "document", "quiz", "assignment", "text", "html", "other"}),
    ),
    FieldRule("duration", kind=(int, float), minimum=0),
    FieldRule("score", kind=(int, float), minimum=0, maximum=100),
    FieldRule("session_id", kind=str, max_length=200),
)

REPORT_JOB_RULES = (
    FieldRule("report_type", required=True, kind=str, min_length=1, lookup_category=REPORT_TYPE_CATEGORY),
    FieldRule("name", required=True, kind=str, min_length=1, max_length=200),
    FieldRule("description", kind=str, max_length=1000),
    FieldRule("output_format", required=True, kind=str, min_length=1),
    FieldRule("priority", kind=str, choices=frozenset({"low", "normal", "high", "critical"})),
    FieldRule("cancel_reason", kind=str, max_length=500),
)
