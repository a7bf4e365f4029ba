from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any, Protocol

from lms_api.document_validation import ACTIVITY_EVENT_CATEGORY, REPORT_TYPE_CATEGORY
from lms_api.errors import ConflictError

logger = logging.getLogger(__name__)

DEFAULT_LOOKUP_VALUES: tuple[dict[str, Any], ...] = (
    {"category": ACTIVITY_EVENT_CATEGORY, "key": "content-viewed", "display_name": "Content viewed"},
    {"category": ACTIVITY_EVENT_CATEGORY, "key": "content-started", "display_name": "Content started"},
    {"category": ACTIVITY_EVENT_CATEGORY, "key": "content-completed", "display_name": "Content completed"},
    {"category": ACTIVITY_EVENT_CATEGORY, "key": "exercise-submitted", "display_name": "Exercise submitted"},
    {"category": ACTIVITY_EVENT_CATEGORY, "key": "exercise-graded", "display_name": "Exercise graded"},
    {"category": ACTIVITY_EVENT_CATEGORY, "key": "enrollment-created", "display_name": "Enrollment created"},
    {"category": ACTIVITY_EVENT_CATEGORY, "key": "enrollment-completed", "display_name": "Enrollment completed"},
    {"category": REPORT_TYPE_CATEGORY, "key": "enrollment-summary", "display_name": "Enrollment summary"},
    {"category": REPORT_TYPE_CATEGORY, "key": "course-completion", "display_name": "Course completion"},
    {"category": REPORT_TYPE_CATEGORY, "key": "learner-activity", "display_name": "Learner activity"},
    {"category": REPORT_TYPE_CATEGORY, "key": "assessment-results", "display_name": "Assessment results"},
)


class LookupValueWriter(Protocol):
    def create(self, *, value: dict[str, Any]) -> dict[str, Any]: ...


def seed_lookup_values(
    repository: LookupValueWriter,
    values: Iterable[dict[str, Any]] = DEFAULT_LOOKUP_VALUES,
) -> int:
    """Insert missing lookup values and return how many were created. Existing keys are left untouched."""
    now = datetime.now(UTC).isoformat()
    created = 0
    for order, item in enumerate(values):
        value = {
            "display_name": None,
            "description": None,
            "is_active": True,
            "sort_order": order,
            **item,
            "created_at": now,
            "updated_at": now,
        }
        try:
            repository.create(value=value)
        except ConflictError:
            continue
        created += 1
    logger.info("lookup_values_seeded created=%s", created)
    return created
