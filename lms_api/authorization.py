from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lms_api.report_jobs import ReportJob

PERMISSION_REPORTS_CREATE = "reports:create"
PERMISSION_REPORTS_READ = "reports:read"
PERMISSION_REPORTS_CANCEL = "reports:cancel"
PERMISSION_SYSTEM_ADMIN = "system:admin"


@dataclass(frozen=True)
class Actor:
    subject: str
    permissions: frozenset[str] = field(default_factory=frozenset)

    def has(self, permission: str) -> bool:
        return permission in self.permissions or PERMISSION_SYSTEM_ADMIN in self.permissions


Predicate = Callable[[Actor, "ReportJob"], bool]


def owner_or(permission: str) -> Predicate:
    def _check(actor: Actor, job: "ReportJob") -> bool:
        return actor.subject == job.owner_id or actor.has(permission)

    return _check


@dataclass(frozen=True)
class ReportJobPolicy:
    can_cancel: Predicate
    can_retry: Predicate
    can_download: Predicate


def default_report_job_policy() -> ReportJobPolicy:
    return ReportJobPolicy(
        can_cancel=owner_or(PERMISSION_REPORTS_CANCEL),
        can_retry=owner_or(PERMISSION_REPORTS_CREATE),
        can_download=owner_or(PERMISSION_REPORTS_READ),
    )
