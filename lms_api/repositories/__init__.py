from lms_api.repositories.learning_events import (
    InMemoryLearningEventsRepository,
    PostgresLearningEventsRepository,
)
from lms_api.repositories.lookup_values import InMemoryLookupValuesRepository, PostgresLookupValuesRepository
from lms_api.repositories.report_jobs import InMemoryReportJobsRepository, PostgresReportJobsRepository

__all__ = [
    "InMemoryLearningEventsRepository",
    "PostgresLearningEventsRepository",
    "InMemoryLookupValuesRepository",
    "PostgresLookupValuesRepository",
    "InMemoryReportJobsRepository",
    "PostgresReportJobsRepository",
]
