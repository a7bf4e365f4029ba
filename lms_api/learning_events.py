from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from lms_api.document_validation import LEARNING_EVENT_RULES, ensure_valid_document
from lms_api.lookup_validator import LookupValidator

logger = logging.getLogger(__name__)


class LearningEventStore(Protocol):
    def create(self, *, event: dict[str, Any]) -> dict[str, Any]: ...

    def list(
        self,
        *,
        learner_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]: ...


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


class LearningEventService:
    def __init__(
        self,
        *,
        store: LearningEventStore,
        lookup_validator: LookupValidator,
        now: Callable[[], str] = _utcnow_iso,
    ) -> None:
        self._store = store
        self._lookup_validator = lookup_validator
        self._now = now

    def record(self, payload: dict[str, Any]) -> dict[str, Any]:
        ensure_valid_document(
            payload,
            LEARNING_EVENT_RULES,
            lookup_validator=self._lookup_validator,
            message="invalid learning event",
        )
        now = self._now()
        data = dict(payload.get("data") or {})
        for extra in ("content_type", "session_id"):
            if payload.get(extra) is not None:
                data[extra] = payload[extra]
        event = self._store.create(
            event={
                "event_id": f"evt_{uuid.uuid4().hex[:16]}",
                "learner_id": payload["learner_id"],
                "event_type": payload["event_type"],
                "course_id": payload.get("course_id"),
                "content_id": payload.get("content_id"),
                "timestamp": payload.get("timestamp") or now,
                "duration": payload.get("duration"),
                "score": payload.get("score"),
                "data": data,
                "created_at": now,
            }
        )
        logger.info(
            "learning_event_recorded event_id=%s learner_id=%s event_type=%s",
            event["event_id"],
            event["learner_id"],
            event["event_type"],
        )
        return event

    def list(
        self,
        *,
        learner_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        return self._store.list(learner_id=learner_id, event_type=event_type, limit=min(max(limit, 1), 200))
