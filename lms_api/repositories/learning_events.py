from __future__ import annotations

import json
import threading
from datetime import datetime
from typing import Any

from lms_api.db.postgres import PostgresTxRunner, validate_identifier

LEARNING_EVENT_COLUMNS = (
    "event_id",
    "learner_id",
    "event_type",
    "course_id",
    "content_id",
    "timestamp",
    "duration",
    "score",
    "data",
    "created_at",
)


class InMemoryLearningEventsRepository:
    def __init__(self, events: list[dict[str, Any]] | None = None) -> None:
        self._lock = threading.RLock()
        self._events = [] if events is None else events

    def create(self, *, event: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._events.append(dict(event))
        return dict(event)

    def list(
        self,
        *,
        learner_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(e) for e in self._events]
        if learner_id:
            rows = [r for r in rows if r["learner_id"] == learner_id]
        if event_type:
            rows = [r for r in rows if r["event_type"] == event_type]
        rows.sort(key=lambda r: str(r["timestamp"]), reverse=True)
        return rows[:limit]

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


class PostgresLearningEventsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "learning_events") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)
        self._columns_sql = ", ".join(LEARNING_EVENT_COLUMNS)

    def ensure_schema(self) -> None:
        sql = f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
                event_id TEXT PRIMARY KEY,
                learner_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                course_id TEXT,
                content_id TEXT,
                timestamp TIMESTAMPTZ NOT NULL,
                duration DOUBLE PRECISION,
                score DOUBLE PRECISION,
                data JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                created_at TIMESTAMPTZ NOT NULL
            )
        """

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(sql)

        self._tx_runner.run_in_tx(fn=_op)

    def create(self, *, event: dict[str, Any]) -> dict[str, Any]:
        placeholders = ", ".join("%s::jsonb" if c == "data" else "%s" for c in LEARNING_EVENT_COLUMNS)
        sql = f"INSERT INTO {self._table_name} ({self._columns_sql}) VALUES ({placeholders})"
        params = tuple(
            json.dumps(event.get(c) or {}, ensure_ascii=True, sort_keys=True) if c == "data" else event.get(c)
            for c in LEARNING_EVENT_COLUMNS
        )

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, params)
            return dict(event)

        return self._tx_runner.run_in_tx(fn=_op)

    def list(
        self,
        *,
        learner_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if learner_id:
            clauses.append("learner_id = %s")
            params.append(learner_id)
        if event_type:
            clauses.append("event_type = %s")
            params.append(event_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"""
            SELECT {self._columns_sql}
            FROM {self._table_name}
            {where}
            ORDER BY timestamp DESC
            LIMIT %s
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params) + (limit,))
                rows = cur.fetchall()
            events = []
            for row in rows:
                event = dict(zip(LEARNING_EVENT_COLUMNS, row))
                for column in ("timestamp", "created_at"):
                    if isinstance(event.get(column), datetime):
                        event[column] = event[column].isoformat()
                if isinstance(event.get("data"), str):
                    event["data"] = json.loads(event["data"])
                events.append(event)
            return events

        return self._tx_runner.run_in_tx(fn=_op)
