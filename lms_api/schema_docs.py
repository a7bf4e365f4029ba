"""JSON Schema documentation that AI agents read to learn the LMS resource shapes.

Documents live as ``<resource>.schema.json`` files. A file may carry top-level
``examples`` and ``validations`` keys; they are split off so the returned
``schema`` is a plain Draft 7 schema.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from lms_api.settings import DEFAULT_SCHEMA_DIR

logger = logging.getLogger(__name__)

SUPPORTED_RESOURCES = ("course", "module", "exercise", "question")
DRAFT_07_URI = "http://json-schema.org/draft-07/schema#"
_RESOURCE_NAME_RE = re.compile(r"[a-z0-9_-]+")


@dataclass(frozen=True)
class SchemaDocument:
    schema: dict[str, Any]
    examples: list[dict[str, Any]] = field(default_factory=list)
    validations: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"schema": self.schema, "examples": self.examples, "validations": self.validations}


class SchemaDocsCache:
    def __init__(
        self,
        *,
        schema_dir: Path = DEFAULT_SCHEMA_DIR,
        resources: tuple[str, ...] = SUPPORTED_RESOURCES,
    ) -> None:
        self._schema_dir = Path(schema_dir)
        self._resources = tuple(resources)
        self._lock = threading.RLock()
        self._cache: dict[str, SchemaDocument] = {}

    def supported_resources(self) -> list[str]:
        return list(self._resources)

    def get_schema(self, resource: object) -> SchemaDocument | None:
        """Return the cached document for ``resource``, or None when it is not served.

        Names are checked before any filesystem access; only allow-listed names
        made of ``[a-z0-9_-]`` ever reach ``open``.
        """
        if not isinstance(resource, str) or not _RESOURCE_NAME_RE.fullmatch(resource):
            return None
        if resource not in self._resources:
            return None
        with self._lock:
            cached = self._cache.get(resource)
            if cached is not None:
                return cached
            document = self._load(resource)
            if document is not None:
                self._cache[resource] = document
            return document

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.debug("schema_docs_cache_cleared")

    def _load(self, resource: str) -> SchemaDocument | None:
        path = self._schema_dir / f"{resource}.schema.json"
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning("schema_doc_missing resource=%s path=%s", resource, path)
            return None
        except (OSError, ValueError) as exc:
            logger.warning("schema_doc_unreadable resource=%s path=%s error=%s", resource, path, exc)
            return None
        if not isinstance(raw, dict):
            logger.warning("schema_doc_malformed resource=%s path=%s", resource, path)
            return None
        examples = raw.pop("examples", None) or []
        validations = raw.pop("validations", None) or {}
        logger.debug("schema_doc_loaded resource=%s", resource)
        return SchemaDocument(schema=raw, examples=list(examples), validations=dict(validations))


def is_valid_json_schema(schema: object) -> bool:
    """Draft 7 documents only: ``$schema`` must name draft-07 and the meta-schema must accept it."""
    if not isinstance(schema, dict):
        return False
    if schema.get("$schema") != DRAFT_07_URI or "type" not in schema:
        return False
    try:
        Draft7Validator.check_schema(schema)
    except SchemaError:
        return False
    return True
