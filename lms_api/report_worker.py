"""Reference producer that drains pending report jobs.

The worker only talks to ``ReportJobService``: it claims a job with ``start``,
reports progress, and finishes with ``succeed`` or ``fail``. When a job is
cancelled while it is being generated, the next transition loses the
conditional update with ``ConflictError``; the worker then drops the job and any
artifact it wrote.
"""

from __future__ import annotations

import csv
import html
import io
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from lms_api.errors import ConflictError, InvalidTransitionError
from lms_api.report_jobs import STATUS_PENDING, ReportJob, ReportJobService
from lms_api.settings import WorkerSettings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]
ReportGenerator = Callable[[ReportJob, ProgressCallback], list[dict[str, Any]]]


class JobAbandoned(Exception):
    """The job left ``running`` under the worker, usually through a cancel."""


@dataclass
class ReportWorkerStats:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }

    def add(self, other: dict[str, int]) -> None:
        self.processed += int(other["processed"])
        self.succeeded += int(other["succeeded"])
        self.failed += int(other["failed"])
        self.skipped += int(other["skipped"])


def render_rows(rows: list[dict[str, Any]], output_format: str) -> str:
    if output_format == "json":
        return json.dumps(rows, ensure_ascii=True, indent=2, sort_keys=True, default=str)
    columns: list[str] = []
    for row in rows:
        for column in row:
            if column not in columns:
                columns.append(column)
    if output_format == "csv":
        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=columns)
        writer.writeheader()
        writer.writerows(rows)
        return buf.getvalue()
    if output_format == "html":
        head = "".join(f"<th>{html.escape(c)}</th>" for c in columns)
        body = "".join(
            "<tr>" + "".join(f"<td>{html.escape(str(row.get(c, '')))}</td>" for c in columns) + "</tr>"
            for row in rows
        )
        return f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>\n"
    raise ValueError(f"unsupported output format: {output_format}")


class LearnerActivityReport:
    """Rows of learning events, optionally narrowed by ``learner_id`` / ``event_type`` parameters."""

    def __init__(self, events_repository: Any, *, limit: int = 1000) -> None:
        self._events = events_repository
        self._limit = limit

    def __call__(self, job: ReportJob, progress: ProgressCallback) -> list[dict[str, Any]]:
        progress(10, "loading learning events")
        events = self._events.list(
            learner_id=job.parameters.get("learner_id"),
            event_type=job.parameters.get("event_type"),
            limit=self._limit,
        )
        progress(60, "building rows")
        return [
            {
                "event_id": e["event_id"],
                "learner_id": e["learner_id"],
                "event_type": e["event_type"],
                "course_id": e.get("course_id"),
                "timestamp": e["timestamp"],
                "duration": e.get("duration"),
                "score": e.get("score"),
            }
            for e in events
        ]


class ReportWorker:
    def __init__(
        self,
        *,
        service: ReportJobService,
        generators: Mapping[str, ReportGenerator],
        artifact_root: Path,
        batch_size: int = 10,
        poll_interval_ms: int = 500,
    ) -> None:
        self.service = service
        self.generators = dict(generators)
        self.artifact_root = Path(artifact_root)
        self.batch_size = max(1, int(batch_size))
        self.poll_interval_ms = max(1, int(poll_interval_ms))

    def run_once(self) -> dict[str, int]:
        stats = ReportWorkerStats()
        pending = self.service.list(
            statuses=[STATUS_PENDING],
            limit=self.batch_size,
            sort_by="created_at",
            sort_order="asc",
        )
        for job in pending["items"]:
            stats.processed += 1
            outcome = self._process(job)
            if outcome == "succeeded":
                stats.succeeded += 1
            elif outcome == "failed":
                stats.failed += 1
            else:
                stats.skipped += 1
        return stats.as_dict()

    def run_forever(self, *, stop_after_iterations: int | None = None) -> dict[str, int]:
        aggregate = ReportWorkerStats()
        iterations = 0
        while True:
            current = self.run_once()
            aggregate.add(current)
            iterations += 1
            if stop_after_iterations is not None and iterations >= max(1, stop_after_iterations):
                break
            if int(current["processed"]) == 0:
                time.sleep(self.poll_interval_ms / 1000.0)
        return aggregate.as_dict()

    def _process(self, job: ReportJob) -> str:
        try:
            running = self.service.start(job.id)
        except (ConflictError, InvalidTransitionError):
            logger.info("report_worker_claim_lost job_id=%s", job.id)
            return "skipped"

        generator = self.generators.get(running.type)
        if generator is None:
            return self._fail(running, f"no report generator registered for type: {running.type}")

        def _progress(percentage: float, step: str) -> None:
            try:
                self.service.report_progress(running.id, percentage=percentage, current_step=step)
            except (ConflictError, InvalidTransitionError) as exc:
                raise JobAbandoned(running.id) from exc

        artifact_path: Path | None = None
        try:
            rows = generator(running, _progress)
            content = render_rows(rows, running.output_format)
            _progress(90, "writing artifact")
            artifact_path = self._write_artifact(running, content)
            self.service.succeed(running.id, artifact_ref=str(artifact_path))
        except (JobAbandoned, ConflictError, InvalidTransitionError):
            logger.info("report_worker_job_abandoned job_id=%s", running.id)
            if artifact_path is not None:
                artifact_path.unlink(missing_ok=True)
            return "skipped"
        except Exception as exc:
            if artifact_path is not None:
                artifact_path.unlink(missing_ok=True)
            return self._fail(running, f"{type(exc).__name__}: {exc}")
        logger.info("report_worker_job_succeeded job_id=%s artifact=%s", running.id, artifact_path)
        return "succeeded"

    def _fail(self, job: ReportJob, reason: str) -> str:
        try:
            self.service.fail(job.id, reason=reason)
        except (ConflictError, InvalidTransitionError):
            return "skipped"
        logger.warning("report_worker_job_failed job_id=%s reason=%s", job.id, reason)
        return "failed"

    def _write_artifact(self, job: ReportJob, content: str) -> Path:
        self.artifact_root.mkdir(parents=True, exist_ok=True)
        path = self.artifact_root / f"{job.id}-attempt{job.attempt_count}.{job.output_format}"
        path.write_text(content, encoding="utf-8")
        return path.resolve()


def create_report_worker_from_env(
    *,
    service: ReportJobService,
    events_repository: Any,
    environ: Mapping[str, str] | None = None,
) -> ReportWorker:
    cfg = WorkerSettings.from_env(environ)
    return ReportWorker(
        service=service,
        generators={"learner-activity": LearnerActivityReport(events_repository)},
        artifact_root=cfg.artifact_root,
        batch_size=cfg.batch_size,
        poll_interval_ms=cfg.poll_interval_ms,
    )
