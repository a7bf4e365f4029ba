from __future__ import annotations

import json
import threading
from datetime import datetime
from typing import Any

from lms_api.db.postgres import PostgresTxRunner, validate_identifier
from lms_api.errors import ConflictError, NotFoundError

REPORT_JOB_COLUMNS = (
    "job_id",
    "owner_id",
    "report_type",
    "name",
    "description",
    "parameters",
    "output_format",
    "priority",
    "status",
    "attempt_count",
    "artifact_ref",
    "failure_reason",
    "cancel_reason",
    "progress",
    "created_at",
    "updated_at",
    "started_at",
    "completed_at",
    "cancelled_at",
)
_JSON_COLUMNS = {"parameters", "progress"}
_MUTABLE_COLUMNS = set(REPORT_JOB_COLUMNS) - {"job_id", "owner_id", "created_at"}
SORTABLE_COLUMNS = {"created_at", "updated_at", "status", "priority"}


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _job_not_found(job_id: str) -> NotFoundError:
    return NotFoundError(f"report job not found: {job_id}", code="REPORT_JOB_NOT_FOUND")


def _status_conflict(job_id: str, expected_status: str, actual_status: str) -> ConflictError:
    return ConflictError(
        f"report job {job_id} changed concurrently: expected {expected_status}, found {actual_status}"
    )


class InMemoryReportJobsRepository:
    def __init__(self, jobs: dict[str, dict[str, Any]] | None = None) -> None:
        self._lock = threading.RLock()
        self._jobs = {} if jobs is None else jobs

    def create(self, *, job: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            job_id = str(job["job_id"])
            if job_id in self._jobs:
                raise ConflictError(f"report job already exists: {job_id}")
            self._jobs[job_id] = dict(job)
            return dict(job)

    def read(self, *, job_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._jobs.get(job_id)
            return dict(row) if row is not None else None

    def conditional_update(
        self,
        *,
        job_id: str,
        expected_status: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        unknown = set(patch) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"unsupported report job fields: {sorted(unknown)}")
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None:
                raise _job_not_found(job_id)
            if row["status"] != expected_status:
                raise _status_conflict(job_id, expected_status, row["status"])
            row.update(patch)
            return dict(row)

    def list(
        self,
        *,
        statuses: list[str] | None = None,
        report_types: list[str] | None = None,
        owner_id: str | None = None,
        offset: int = 0,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[dict[str, Any]], int]:
        if sort_by not in SORTABLE_COLUMNS:
            raise ValueError(f"unsupported sort column: {sort_by}")
        with self._lock:
            rows = [dict(r) for r in self._jobs.values()]
        if statuses:
            rows = [r for r in rows if r.get("status") in statuses]
        if report_types:
            rows = [r for r in rows if r.get("report_type") in report_types]
        if owner_id:
            rows = [r for r in rows if r.get("owner_id") == owner_id]
        rows.sort(key=lambda r: (str(r.get(sort_by) or ""), r["job_id"]), reverse=sort_order == "desc")
        total = len(rows)
        return rows[offset : offset + limit], total

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()


class PostgresReportJobsRepository:
    """Report jobs on PostgreSQL; status guards are enforced inside the UPDATE itself."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "report_jobs") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)
        self._columns_sql = ", ".join(REPORT_JOB_COLUMNS)

    def ensure_schema(self) -> None:
        sql = f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
                job_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                report_type TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                parameters JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                output_format TEXT NOT NULL,
                priority TEXT NOT NULL,
                status TEXT NOT NULL,
                attempt_count INTEGER NOT NULL DEFAULT 1 CHECK (attempt_count >= 1),
                artifact_ref TEXT,
                failure_reason TEXT,
                cancel_reason TEXT,
                progress JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                cancelled_at TIMESTAMPTZ
            )
        """
        index_sql = f"""
            CREATE INDEX IF NOT EXISTS idx_{self._table_name}_status_created
            ON {self._table_name}(status, created_at)
        """

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(sql)
                cur.execute(index_sql)

        self._tx_runner.run_in_tx(fn=_op)

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column in _JSON_COLUMNS and value is not None:
            return json.dumps(value, ensure_ascii=True, sort_keys=True)
        return value

    @staticmethod
    def _row_to_job(row: tuple[Any, ...]) -> dict[str, Any]:
        job = {column: _iso(value) for column, value in zip(REPORT_JOB_COLUMNS, row)}
        if isinstance(job.get("parameters"), str):
            job["parameters"] = json.loads(job["parameters"])
        if isinstance(job.get("progress"), str):
            job["progress"] = json.loads(job["progress"])
        job["parameters"] = job.get("parameters") or {}
        job["attempt_count"] = int(job["attempt_count"])
        return job

    def create(self, *, job: dict[str, Any]) -> dict[str, Any]:
        placeholders = ", ".join(
            "%s::jsonb" if column in _JSON_COLUMNS else "%s" for column in REPORT_JOB_COLUMNS
        )
        sql = f"""
            INSERT INTO {self._table_name} ({self._columns_sql})
            VALUES ({placeholders})
            ON CONFLICT (job_id) DO NOTHING
            RETURNING job_id
        """
        params = tuple(self._encode(column, job.get(column)) for column in REPORT_JOB_COLUMNS)

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                inserted = cur.fetchone()
            if inserted is None:
                raise ConflictError(f"report job already exists: {job['job_id']}")
            return dict(job)

        return self._tx_runner.run_in_tx(fn=_op)

    def read(self, *, job_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT {self._columns_sql}
            FROM {self._table_name}
            WHERE job_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (job_id,))
                row = cur.fetchone()
            if row is None:
                return None
            return self._row_to_job(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def conditional_update(
        self,
        *,
        job_id: str,
        expected_status: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        if not patch:
            raise ValueError("patch must not be empty")
        unknown = set(patch) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"unsupported report job fields: {sorted(unknown)}")
        columns = sorted(patch)
        assignments = ", ".join(
            f"{column} = %s::jsonb" if column in _JSON_COLUMNS else f"{column} = %s" for column in columns
        )
        update_sql = f"""
            UPDATE {self._table_name}
            SET {assignments}
            WHERE job_id = %s AND status = %s
            RETURNING {self._columns_sql}
        """
        status_sql = f"SELECT status FROM {self._table_name} WHERE job_id = %s"
        params = tuple(self._encode(column, patch[column]) for column in columns) + (job_id, expected_status)

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(update_sql, params)
                row = cur.fetchone()
                if row is not None:
                    return self._row_to_job(row)
                cur.execute(status_sql, (job_id,))
                current = cur.fetchone()
            if current is None:
                raise _job_not_found(job_id)
            raise _status_conflict(job_id, expected_status, str(current[0]))

        return self._tx_runner.run_in_tx(fn=_op)

    def list(
        self,
        *,
        statuses: list[str] | None = None,
        report_types: list[str] | None = None,
        owner_id: str | None = None,
        offset: int = 0,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[dict[str, Any]], int]:
        if sort_by not in SORTABLE_COLUMNS:
            raise ValueError(f"unsupported sort column: {sort_by}")
        direction = "DESC" if sort_order == "desc" else "ASC"
        clauses: list[str] = []
        params: list[Any] = []
        if statuses:
            clauses.append("status = ANY(%s)")
            params.append(list(statuses))
        if report_types:
            clauses.append("report_type = ANY(%s)")
            params.append(list(report_types))
        if owner_id:
            clauses.append("owner_id = %s")
            params.append(owner_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        count_sql = f"SELECT COUNT(*) FROM {self._table_name} {where}"
        select_sql = f"""
            SELECT {self._columns_sql}
            FROM {self._table_name}
            {where}
            ORDER BY {sort_by} {direction}, job_id {direction}
            LIMIT %s OFFSET %s
        """

        def _op(conn: Any) -> tuple[list[dict[str, Any]], int]:
            with conn.cursor() as cur:
                cur.execute(count_sql, tuple(params))
                total_row = cur.fetchone()
                cur.execute(select_sql, tuple(params) + (limit, offset))
                rows = cur.fetchall()
            total = int(total_row[0]) if total_row else 0
            return [self._row_to_job(r) for r in rows], total

        return self._tx_runner.run_in_tx(fn=_op)
