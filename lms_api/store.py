from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from lms_api.db.postgres import PostgresTxRunner
from lms_api.learning_events import LearningEventService
from lms_api.lookup_cache import LookupCache
from lms_api.lookup_validator import LookupValidator
from lms_api.report_jobs import ReportJobService
from lms_api.repositories import (
    InMemoryLearningEventsRepository,
    InMemoryLookupValuesRepository,
    InMemoryReportJobsRepository,
    PostgresLearningEventsRepository,
    PostgresLookupValuesRepository,
    PostgresReportJobsRepository,
)
from lms_api.schema_docs import SchemaDocsCache
from lms_api.seed import seed_lookup_values
from lms_api.settings import CacheSettings, ReportJobSettings, StoreSettings

logger = logging.getLogger(__name__)


@dataclass
class LmsStore:
    """Everything a request handler needs, built once per app."""

    backend: str
    report_jobs_repository: Any
    lookup_values_repository: Any
    learning_events_repository: Any
    lookup_validator: LookupValidator
    schema_docs: SchemaDocsCache
    report_jobs: ReportJobService
    learning_events: LearningEventService

    def reset(self) -> None:
        for repository in (
            self.report_jobs_repository,
            self.lookup_values_repository,
            self.learning_events_repository,
        ):
            if hasattr(repository, "reset"):
                repository.reset()
        self.lookup_validator.invalidate()
        self.schema_docs.clear_cache()


def create_store_from_env(environ: Mapping[str, str] | None = None, *, seed: bool | None = None) -> LmsStore:
    store_cfg = StoreSettings.from_env(environ)
    cache_cfg = CacheSettings.from_env(environ)
    jobs_cfg = ReportJobSettings.from_env(environ)

    if store_cfg.backend == "postgres":
        tx_runner = PostgresTxRunner(store_cfg.postgres_dsn)
        report_jobs_repo: Any = PostgresReportJobsRepository(
            tx_runner=tx_runner,
            table_name=store_cfg.report_jobs_table,
        )
        lookup_repo: Any = PostgresLookupValuesRepository(
            tx_runner=tx_runner,
            table_name=store_cfg.lookup_values_table,
        )
        events_repo: Any = PostgresLearningEventsRepository(
            tx_runner=tx_runner,
            table_name=store_cfg.learning_events_table,
        )
        for repository in (report_jobs_repo, lookup_repo, events_repo):
            repository.ensure_schema()
    else:
        report_jobs_repo = InMemoryReportJobsRepository()
        lookup_repo = InMemoryLookupValuesRepository()
        events_repo = InMemoryLearningEventsRepository()

    # The memory backend starts empty on every boot, so it is seeded by default.
    should_seed = store_cfg.backend == "memory" if seed is None else seed
    if should_seed:
        seed_lookup_values(lookup_repo)

    lookup_validator = LookupValidator(
        cache=LookupCache(
            ttl_seconds=cache_cfg.lookup_ttl_seconds,
            max_entries=cache_cfg.lookup_max_entries,
        ),
        source=lookup_repo,
    )
    logger.info(
        "lms_store_created backend=%s lookup_ttl_seconds=%s max_attempts=%s",
        store_cfg.backend,
        cache_cfg.lookup_ttl_seconds,
        jobs_cfg.max_attempts,
    )
    return LmsStore(
        backend=store_cfg.backend,
        report_jobs_repository=report_jobs_repo,
        lookup_values_repository=lookup_repo,
        learning_events_repository=events_repo,
        lookup_validator=lookup_validator,
        schema_docs=SchemaDocsCache(schema_dir=cache_cfg.schema_dir),
        report_jobs=ReportJobService(
            store=report_jobs_repo,
            lookup_validator=lookup_validator if jobs_cfg.validate_report_type else None,
            max_attempts=jobs_cfg.max_attempts,
        ),
        learning_events=LearningEventService(store=events_repo, lookup_validator=lookup_validator),
    )
