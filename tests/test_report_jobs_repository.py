from __future__ import annotations

import json

import pytest

from lms_api.errors import ConflictError, NotFoundError
from lms_api.repositories.report_jobs import (
    REPORT_JOB_COLUMNS,
    InMemoryReportJobsRepository,
    PostgresReportJobsRepository,
)


def _job_dict(job_id: str = "rjob_repo_1", status: str = "pending") -> dict:
    return {
        "job_id": job_id,
        "owner_id": "user_owner",
        "report_type": "enrollment-summary",
        "name": "Enrollment summary",
        "description": None,
        "parameters": {"course_id": "crs_1"},
        "output_format": "csv",
        "priority": "normal",
        "status": status,
        "attempt_count": 1,
        "artifact_ref": None,
        "failure_reason": None,
        "cancel_reason": None,
        "progress": None,
        "created_at": "2026-01-01T00:00:00+00:00",
        "updated_at": "2026-01-01T00:00:00+00:00",
        "started_at": None,
        "completed_at": None,
        "cancelled_at": None,
    }


class FakeCursor:
    def __init__(self, results: list):
        self._results = results
        self.statements: list[tuple[str, tuple | None]] = []
        self._row = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, query: str, params=None):
        self.statements.append((query, params))
        self._row = self._results.pop(0) if self._results else None

    def fetchone(self):
        return self._row

    def fetchall(self):
        return self._row or []


class FakeConnection:
    def __init__(self, cursor: FakeCursor):
        self._cursor = cursor

    def cursor(self):
        return self._cursor


class FakeRunner:
    def __init__(self, results: list | None = None):
        self.cursor = FakeCursor(list(results or []))
        self.calls = 0

    def run_in_tx(self, *, fn):
        self.calls += 1
        return fn(FakeConnection(self.cursor))


def _row(job: dict) -> tuple:
    encoded = dict(job)
    encoded["parameters"] = json.dumps(job["parameters"])
    return tuple(encoded[c] for c in REPORT_JOB_COLUMNS)


def test_inmemory_conditional_update_applies_patch_when_status_matches():
    repo = InMemoryReportJobsRepository()
    repo.create(job=_job_dict())
    updated = repo.conditional_update(
        job_id="rjob_repo_1",
        expected_status="pending",
        patch={"status": "running", "started_at": "2026-01-01T00:01:00+00:00"},
    )
    assert updated["status"] == "running"
    assert repo.read(job_id="rjob_repo_1")["started_at"] == "2026-01-01T00:01:00+00:00"


def test_inmemory_conditional_update_conflicts_on_stale_status():
    repo = InMemoryReportJobsRepository()
    repo.create(job=_job_dict(status="cancelled"))
    with pytest.raises(ConflictError) as exc_info:
        repo.conditional_update(job_id="rjob_repo_1", expected_status="running", patch={"status": "completed"})
    assert exc_info.value.retryable is True
    assert repo.read(job_id="rjob_repo_1")["status"] == "cancelled"


def test_inmemory_conditional_update_unknown_job_and_field():
    repo = InMemoryReportJobsRepository()
    with pytest.raises(NotFoundError):
        repo.conditional_update(job_id="missing", expected_status="pending", patch={"status": "running"})
    repo.create(job=_job_dict())
    with pytest.raises(ValueError, match="unsupported report job fields"):
        repo.conditional_update(job_id="rjob_repo_1", expected_status="pending", patch={"owner_id": "x"})


def test_inmemory_returns_copies():
    repo = InMemoryReportJobsRepository()
    repo.create(job=_job_dict())
    row = repo.read(job_id="rjob_repo_1")
    row["status"] = "completed"
    assert repo.read(job_id="rjob_repo_1")["status"] == "pending"


def test_inmemory_create_rejects_duplicate_id():
    repo = InMemoryReportJobsRepository()
    repo.create(job=_job_dict())
    with pytest.raises(ConflictError):
        repo.create(job=_job_dict())


def test_inmemory_list_rejects_unknown_sort_column():
    with pytest.raises(ValueError):
        InMemoryReportJobsRepository().list(sort_by="owner_id")


def test_postgres_repository_rejects_invalid_table_name():
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        PostgresReportJobsRepository(tx_runner=FakeRunner(), table_name="report_jobs;drop table x")


def test_postgres_create_inserts_and_detects_duplicates():
    runner = FakeRunner(results=[("rjob_repo_1",), None])
    repo = PostgresReportJobsRepository(tx_runner=runner, table_name="report_jobs")

    created = repo.create(job=_job_dict())
    assert created["job_id"] == "rjob_repo_1"
    insert_sql, params = runner.cursor.statements[0]
    assert "INSERT INTO report_jobs" in insert_sql
    assert "ON CONFLICT (job_id) DO NOTHING" in insert_sql
    assert params[REPORT_JOB_COLUMNS.index("parameters")] == json.dumps({"course_id": "crs_1"}, sort_keys=True)

    with pytest.raises(ConflictError):
        repo.create(job=_job_dict())


def test_postgres_conditional_update_uses_status_predicate():
    running = {**_job_dict(), "status": "running"}
    runner = FakeRunner(results=[_row(running)])
    repo = PostgresReportJobsRepository(tx_runner=runner)

    updated = repo.conditional_update(
        job_id="rjob_repo_1",
        expected_status="pending",
        patch={"status": "running", "progress": {"percentage": 0}},
    )

    sql, params = runner.cursor.statements[0]
    assert "WHERE job_id = %s AND status = %s" in sql
    assert "progress = %s::jsonb" in sql
    assert params == (json.dumps({"percentage": 0}), "running", "rjob_repo_1", "pending")
    assert updated["status"] == "running"
    assert updated["parameters"] == {"course_id": "crs_1"}


def test_postgres_conditional_update_distinguishes_conflict_from_missing():
    repo = PostgresReportJobsRepository(tx_runner=FakeRunner(results=[None, ("cancelled",)]))
    with pytest.raises(ConflictError, match="found cancelled"):
        repo.conditional_update(job_id="rjob_repo_1", expected_status="running", patch={"status": "completed"})

    repo = PostgresReportJobsRepository(tx_runner=FakeRunner(results=[None, None]))
    with pytest.raises(NotFoundError):
        repo.conditional_update(job_id="rjob_repo_1", expected_status="running", patch={"status": "completed"})


def test_postgres_list_builds_filters_and_paging():
    runner = FakeRunner(results=[(1,), [_row(_job_dict())]])
    repo = PostgresReportJobsRepository(tx_runner=runner)

    rows, total = repo.list(statuses=["pending"], owner_id="user_owner", offset=20, limit=10, sort_order="asc")

    assert total == 1
    assert rows[0]["job_id"] == "rjob_repo_1"
    count_sql, count_params = runner.cursor.statements[0]
    select_sql, select_params = runner.cursor.statements[1]
    assert "status = ANY(%s)" in count_sql and "owner_id = %s" in count_sql
    assert count_params == (["pending"], "user_owner")
    assert "ORDER BY created_at ASC" in select_sql
    assert select_params == (["pending"], "user_owner", 10, 20)
