from __future__ import annotations

import threading
from datetime import datetime
from typing import Any

from lms_api.db.postgres import PostgresTxRunner, validate_identifier
from lms_api.errors import ConflictError, NotFoundError

LOOKUP_VALUE_COLUMNS = (
    "category",
    "key",
    "display_name",
    "description",
    "is_active",
    "sort_order",
    "created_at",
    "updated_at",
)
_UPDATABLE_COLUMNS = {"display_name", "description", "is_active", "sort_order", "updated_at"}


def _lookup_not_found(category: str, key: str) -> NotFoundError:
    return NotFoundError(f"lookup value not found: {category}/{key}", code="LOOKUP_VALUE_NOT_FOUND")


class InMemoryLookupValuesRepository:
    def __init__(self, values: dict[tuple[str, str], dict[str, Any]] | None = None) -> None:
        self._lock = threading.RLock()
        self._values = {} if values is None else values

    def query_active(self, category: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = [
                dict(v)
                for (row_category, _), v in self._values.items()
                if row_category == category and v.get("is_active", True)
            ]
        rows.sort(key=lambda r: (int(r.get("sort_order", 0)), r["key"]))
        return [{"key": r["key"]} for r in rows]

    def list(self, *, category: str | None = None, include_inactive: bool = False) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(v) for v in self._values.values()]
        if category:
            rows = [r for r in rows if r["category"] == category]
        if not include_inactive:
            rows = [r for r in rows if r.get("is_active", True)]
        rows.sort(key=lambda r: (r["category"], int(r.get("sort_order", 0)), r["key"]))
        return rows

    def get(self, *, category: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._values.get((category, key))
            return dict(row) if row is not None else None

    def create(self, *, value: dict[str, Any]) -> dict[str, Any]:
        ident = (str(value["category"]), str(value["key"]))
        with self._lock:
            if ident in self._values:
                raise ConflictError(
                    f"lookup value already exists: {ident[0]}/{ident[1]}",
                    code="LOOKUP_VALUE_EXISTS",
                )
            self._values[ident] = dict(value)
            return dict(value)

    def update(self, *, category: str, key: str, patch: dict[str, Any]) -> dict[str, Any]:
        unknown = set(patch) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"unsupported lookup value fields: {sorted(unknown)}")
        with self._lock:
            row = self._values.get((category, key))
            if row is None:
                raise _lookup_not_found(category, key)
            row.update(patch)
            return dict(row)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class PostgresLookupValuesRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "lookup_values") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)
        self._columns_sql = ", ".join(LOOKUP_VALUE_COLUMNS)

    def ensure_schema(self) -> None:
        sql = f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
                category TEXT NOT NULL,
                key TEXT NOT NULL,
                display_name TEXT,
                description TEXT,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                sort_order INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (category, key)
            )
        """

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(sql)

        self._tx_runner.run_in_tx(fn=_op)

    @staticmethod
    def _row_to_value(row: tuple[Any, ...]) -> dict[str, Any]:
        value = dict(zip(LOOKUP_VALUE_COLUMNS, row))
        for column in ("created_at", "updated_at"):
            if isinstance(value.get(column), datetime):
                value[column] = value[column].isoformat()
        value["is_active"] = bool(value["is_active"])
        value["sort_order"] = int(value.get("sort_order") or 0)
        return value

    def query_active(self, category: str) -> list[dict[str, Any]]:
        sql = f"""
            SELECT key
            FROM {self._table_name}
            WHERE category = %s AND is_active = TRUE
            ORDER BY sort_order, key
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (category,))
                rows = cur.fetchall()
            return [{"key": row[0]} for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def list(self, *, category: str | None = None, include_inactive: bool = False) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if category:
            clauses.append("category = %s")
            params.append(category)
        if not include_inactive:
            clauses.append("is_active = TRUE")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"""
            SELECT {self._columns_sql}
            FROM {self._table_name}
            {where}
            ORDER BY category, sort_order, key
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            return [self._row_to_value(r) for r in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, *, category: str, key: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT {self._columns_sql}
            FROM {self._table_name}
            WHERE category = %s AND key = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (category, key))
                row = cur.fetchone()
            return self._row_to_value(row) if row is not None else None

        return self._tx_runner.run_in_tx(fn=_op)

    def create(self, *, value: dict[str, Any]) -> dict[str, Any]:
        placeholders = ", ".join("%s" for _ in LOOKUP_VALUE_COLUMNS)
        sql = f"""
            INSERT INTO {self._table_name} ({self._columns_sql})
            VALUES ({placeholders})
            ON CONFLICT (category, key) DO NOTHING
            RETURNING key
        """
        params = tuple(value.get(column) for column in LOOKUP_VALUE_COLUMNS)

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                inserted = cur.fetchone()
            if inserted is None:
                raise ConflictError(
                    f"lookup value already exists: {value['category']}/{value['key']}",
                    code="LOOKUP_VALUE_EXISTS",
                )
            return dict(value)

        return self._tx_runner.run_in_tx(fn=_op)

    def update(self, *, category: str, key: str, patch: dict[str, Any]) -> dict[str, Any]:
        if not patch:
            raise ValueError("patch must not be empty")
        unknown = set(patch) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"unsupported lookup value fields: {sorted(unknown)}")
        columns = sorted(patch)
        assignments = ", ".join(f"{column} = %s" for column in columns)
        sql = f"""
            UPDATE {self._table_name}
            SET {assignments}
            WHERE category = %s AND key = %s
            RETURNING {self._columns_sql}
        """
        params = tuple(patch[column] for column in columns) + (category, key)

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            if row is None:
                raise _lookup_not_found(category, key)
            return self._row_to_value(row)

        return self._tx_runner.run_in_tx(fn=_op)
