from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

DEFAULT_LOOKUP_CACHE_TTL_SECONDS = 300
DEFAULT_LOOKUP_CACHE_MAX_ENTRIES = 256
DEFAULT_SCHEMA_DIR = Path(__file__).resolve().parent / "ai_schemas"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int = 0) -> int:
    raw = str(env.get(name, "")).strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_str(env: Mapping[str, str], name: str, default: str = "") -> str:
    return str(env.get(name, default)).strip() or default


def true_stack_required(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return _as_bool(env.get("LMS_REQUIRE_TRUESTACK", "false"))


@dataclass(frozen=True)
class StoreSettings:
    backend: str
    postgres_dsn: str
    report_jobs_table: str
    lookup_values_table: str
    learning_events_table: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "StoreSettings":
        env = os.environ if environ is None else environ
        backend = _env_str(env, "LMS_STORE_BACKEND", "memory").lower()
        if true_stack_required(env) and backend != "postgres":
            raise RuntimeError("LMS_STORE_BACKEND must be postgres when LMS_REQUIRE_TRUESTACK=true")
        if backend not in {"memory", "postgres"}:
            raise ValueError(f"unsupported LMS_STORE_BACKEND: {backend}")
        dsn = _env_str(env, "POSTGRES_DSN")
        if backend == "postgres" and not dsn:
            raise ValueError("POSTGRES_DSN must be set when LMS_STORE_BACKEND=postgres")
        return cls(
            backend=backend,
            postgres_dsn=dsn,
            report_jobs_table=_env_str(env, "LMS_REPORT_JOBS_TABLE", "report_jobs"),
            lookup_values_table=_env_str(env, "LMS_LOOKUP_VALUES_TABLE", "lookup_values"),
            learning_events_table=_env_str(env, "LMS_LEARNING_EVENTS_TABLE", "learning_events"),
        )


@dataclass(frozen=True)
class CacheSettings:
    lookup_ttl_seconds: int
    lookup_max_entries: int
    schema_dir: Path

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CacheSettings":
        env = os.environ if environ is None else environ
        schema_dir_raw = _env_str(env, "AI_SCHEMA_DIR")
        return cls(
            lookup_ttl_seconds=_env_int(
                env,
                "LOOKUP_CACHE_TTL_SECONDS",
                default=DEFAULT_LOOKUP_CACHE_TTL_SECONDS,
                minimum=1,
            ),
            lookup_max_entries=_env_int(
                env,
                "LOOKUP_CACHE_MAX_ENTRIES",
                default=DEFAULT_LOOKUP_CACHE_MAX_ENTRIES,
                minimum=1,
            ),
            schema_dir=Path(schema_dir_raw) if schema_dir_raw else DEFAULT_SCHEMA_DIR,
        )


@dataclass(frozen=True)
class ReportJobSettings:
    # None means retries are not capped by the core.
    max_attempts: int | None
    validate_report_type: bool

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ReportJobSettings":
        env = os.environ if environ is None else environ
        max_attempts = _env_int(env, "REPORT_JOB_MAX_ATTEMPTS", default=0, minimum=0)
        return cls(
            max_attempts=max_attempts or None,
            validate_report_type=_as_bool(_env_str(env, "REPORT_JOB_VALIDATE_TYPE", "true")),
        )


@dataclass(frozen=True)
class WorkerSettings:
    batch_size: int
    poll_interval_ms: int
    artifact_root: Path

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "WorkerSettings":
        env = os.environ if environ is None else environ
        return cls(
            batch_size=_env_int(env, "REPORT_WORKER_BATCH_SIZE", default=10, minimum=1),
            poll_interval_ms=_env_int(env, "REPORT_WORKER_POLL_INTERVAL_MS", default=500, minimum=1),
            artifact_root=Path(_env_str(env, "REPORT_ARTIFACT_ROOT", ".local/report-artifacts")),
        )
