#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging

from lms_api.report_worker import create_report_worker_from_env
from lms_api.store import create_store_from_env


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the report worker loop over pending report jobs.")
    parser.add_argument(
        "--iterations",
        type=int,
        default=0,
        help="Stop after N iterations (0 means run forever).",
    )
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

    lms_store = create_store_from_env()
    worker = create_report_worker_from_env(
        service=lms_store.report_jobs,
        events_repository=lms_store.learning_events_repository,
    )
    stats = worker.run_forever(stop_after_iterations=args.iterations if args.iterations > 0 else None)
    print(json.dumps({"success": True, "stats": stats}, ensure_ascii=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
