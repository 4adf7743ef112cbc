#!/usr/bin/env python3
"""Entry point for the external scheduler (cron, systemd timer) every few minutes."""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path


def _bootstrap_imports() -> None:
    backend_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(backend_root))

    os.environ.setdefault("EMAIL_ENABLED", "false")


def main() -> int:
    parser = argparse.ArgumentParser(description="Schedule 24h and 1h event reminders.")
    parser.add_argument(
        "--run-now",
        action="store_true",
        help="Run the reminder sweep in this process instead of enqueueing it for a worker.",
    )
    parser.add_argument(
        "--dedupe",
        action="store_true",
        help="Skip reminders already queued or sent (only with --run-now).",
    )
    args = parser.parse_args()

    _bootstrap_imports()

    from academia_world import models  # noqa: PLC0415
    from academia_world.database import SessionLocal  # noqa: PLC0415
    from academia_world.logging_utils import configure_logging  # noqa: PLC0415
    from academia_world.reminders import schedule_event_reminders  # noqa: PLC0415
    from academia_world.task_queue import JOB_TYPE_SCHEDULE_EVENT_REMINDERS, enqueue_job  # noqa: PLC0415

    configure_logging()

    with SessionLocal() as db:
        if args.run_now:
            result = schedule_event_reminders(db, dedupe=True if args.dedupe else None)
            print(json.dumps(result, sort_keys=True))
            return 0

        existing = (
            db.query(models.BackgroundJob.id)
            .filter(
                models.BackgroundJob.job_type == JOB_TYPE_SCHEDULE_EVENT_REMINDERS,
                models.BackgroundJob.status.in_(["queued", "running"]),
            )
            .first()
        )
        if existing:
            print("no jobs enqueued (already queued/running)")
            return 0
        job = enqueue_job(db, JOB_TYPE_SCHEDULE_EVENT_REMINDERS, {})
        print(f"enqueued job_type={job.job_type} job_id={job.id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
