#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import pathlib

from lms_api.seed import DEFAULT_LOOKUP_VALUES, seed_lookup_values
from lms_api.store import create_store_from_env


def _load_values(path: str | None) -> list[dict[str, object]]:
    if not path:
        return list(DEFAULT_LOOKUP_VALUES)
    raw = json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError("lookup value file must contain a JSON array")
    return raw


def main() -> int:
    parser = argparse.ArgumentParser(description="Insert missing lookup values into the configured store.")
    parser.add_argument("--file", default=None, help="JSON array of lookup values (defaults to built-in set).")
    args = parser.parse_args()

    lms_store = create_store_from_env(seed=False)
    values = _load_values(args.file)
    created = seed_lookup_values(lms_store.lookup_values_repository, values)
    print(
        json.dumps(
            {"success": True, "backend": lms_store.backend, "requested": len(values), "created": created},
            ensure_ascii=True,
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
