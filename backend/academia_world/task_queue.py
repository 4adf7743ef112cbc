from __future__ import annotations

import signal
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .exceptions import JobTimeoutError
from .logging_utils import log_error, log_event, log_warning


JOB_TYPE_SEND_EMAIL_VERIFICATION = "send_email_verification"
JOB_TYPE_SEND_REGISTRATION_CONFIRMATION = "send_registration_confirmation"
JOB_TYPE_SEND_EVENT_REMINDER = "send_event_reminder"
JOB_TYPE_SEND_ADMIN_NOTIFICATION = "send_admin_notification"
JOB_TYPE_SCHEDULE_EVENT_REMINDERS = "schedule_event_reminders"

JobHandler = Callable[..., "dict[str, Any] | None"]

_CONTEXT_KEYS = ("event_id", "user_id", "notification_type", "reminder_type")


def enqueue_job(
    db: Session,
    job_type: str,
    payload: dict[str, Any],
    *,
    dedupe_key: str | None = None,
    run_at: datetime | None = None,
    max_attempts: int | None = None,
) -> models.BackgroundJob:
    job = models.BackgroundJob(
        job_type=job_type,
        dedupe_key=dedupe_key,
        payload=payload,
        status="queued",
        attempts=0,
        max_attempts=max_attempts or settings.task_queue_max_attempts,
        run_at=run_at or _now_utc(),
    )
    db.add(job)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if dedupe_key is None:
            raise
        existing = (
            db.query(models.BackgroundJob)
            .filter(
                models.BackgroundJob.job_type == job_type,
                models.BackgroundJob.dedupe_key == dedupe_key,
                models.BackgroundJob.status.in_(["queued", "running"]),
            )
            .order_by(models.BackgroundJob.id.desc())
            .first()
        )
        if existing is None:
            raise
        log_event("job_deduplicated", job_id=existing.id, job_type=job_type, dedupe_key=dedupe_key)
        return existing
    db.refresh(job)
    log_event("job_enqueued", job_id=job.id, job_type=job.job_type, **job_context(payload))
    return job


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def job_context(payload: dict[str, Any] | None) -> dict[str, Any]:
    payload = payload or {}
    return {key: payload[key] for key in _CONTEXT_KEYS if payload.get(key) is not None}


def requeue_stale_jobs(db: Session, *, stale_after_seconds: int | None = None) -> int:
    stale_after_seconds = stale_after_seconds or settings.task_queue_stale_after_seconds
    cutoff = _now_utc() - timedelta(seconds=stale_after_seconds)
    count = (
        db.query(models.BackgroundJob)
        .filter(models.BackgroundJob.status == "running", models.BackgroundJob.locked_at != None, models.BackgroundJob.locked_at < cutoff)  # noqa: E711
        .update(
            {
                "status": "queued",
                "locked_at": None,
                "locked_by": None,
            },
            synchronize_session=False,
        )
    )
    if count:
        db.commit()
        log_warning("jobs_requeued_stale", count=count)
    return int(count or 0)


def claim_next_job(db: Session, *, worker_id: str) -> models.BackgroundJob | None:
    now = _now_utc()
    query = (
        db.query(models.BackgroundJob)
        .filter(models.BackgroundJob.status == "queued", models.BackgroundJob.run_at <= now)
        .order_by(models.BackgroundJob.run_at.asc(), models.BackgroundJob.id.asc())
    )
    if db.bind and db.bind.dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)
    job = query.first()
    if not job:
        return None
    job.status = "running"
    job.locked_at = now
    job.locked_by = worker_id
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def mark_job_succeeded(db: Session, job: models.BackgroundJob, result: dict[str, Any] | None = None) -> None:
    job.status = "succeeded"
    job.finished_at = _now_utc()
    job.locked_at = None
    job.locked_by = None
    job.dedupe_key = None
    db.add(job)
    db.commit()
    log_event(
        "job_succeeded",
        job_id=job.id,
        job_type=job.job_type,
        attempts=job.attempts,
        result=result or {},
        **job_context(job.payload),
    )


def mark_job_failed(db: Session, job: models.BackgroundJob, error: str, *, retryable: bool = True) -> None:
    job.attempts = (job.attempts or 0) + 1
    job.last_error = error
    job.locked_at = None
    job.locked_by = None
    if retryable and job.attempts < (job.max_attempts or settings.task_queue_max_attempts):
        backoff_seconds = min(60, 2 ** max(0, job.attempts - 1))
        job.status = "queued"
        job.run_at = _now_utc() + timedelta(seconds=backoff_seconds)
        db.add(job)
        db.commit()
        log_warning(
            "job_failed_retrying",
            job_id=job.id,
            job_type=job.job_type,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            backoff_seconds=backoff_seconds,
            error=error,
            **job_context(job.payload),
        )
        return

    job.status = "failed"
    job.finished_at = _now_utc()
    job.dedupe_key = None
    db.add(job)
    db.commit()
    log_error(
        "job_failed_permanently",
        job_id=job.id,
        job_type=job.job_type,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        error=error,
        **job_context(job.payload),
    )


@contextmanager
def job_timeout(seconds: float | None):
    """Interrupt the wrapped block with JobTimeoutError after ``seconds``.

    Relies on SIGALRM, so it is only armed on the main thread of a POSIX
    process (the worker); elsewhere the block runs without a deadline.
    """
    if (
        not seconds
        or seconds <= 0
        or not hasattr(signal, "SIGALRM")
        or threading.current_thread() is not threading.main_thread()
    ):
        yield
        return

    def _on_alarm(_signum, _frame):  # noqa: ANN001
        raise JobTimeoutError(f"job exceeded timeout of {seconds}s")

    previous = signal.signal(signal.SIGALRM, _on_alarm)
    signal.setitimer(signal.ITIMER_REAL, seconds)
    try:
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0)
        signal.signal(signal.SIGALRM, previous)


def _job_handlers() -> dict[str, JobHandler]:
    from . import notifications, reminders  # noqa: PLC0415

    return {
        JOB_TYPE_SEND_EMAIL_VERIFICATION: notifications.handle_email_verification,
        JOB_TYPE_SEND_REGISTRATION_CONFIRMATION: notifications.handle_registration_confirmation,
        JOB_TYPE_SEND_EVENT_REMINDER: notifications.handle_event_reminder,
        JOB_TYPE_SEND_ADMIN_NOTIFICATION: notifications.handle_admin_notification,
        JOB_TYPE_SCHEDULE_EVENT_REMINDERS: reminders.handle_schedule_event_reminders,
    }


def process_job(db: Session, job: models.BackgroundJob, *, timeout_seconds: float | None = None) -> None:
    payload = job.payload or {}
    handler = _job_handlers().get(job.job_type)
    if handler is None:
        mark_job_failed(db, job, error=f"Unknown job_type: {job.job_type}", retryable=False)
        return

    try:
        with job_timeout(timeout_seconds):
            result = handler(db=db, payload=payload)
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        log_error(
            "job_execution_failed",
            exc_info=True,
            job_id=job.id,
            job_type=job.job_type,
            attempt=(job.attempts or 0) + 1,
            error=str(exc) or exc.__class__.__name__,
            **job_context(payload),
        )
        mark_job_failed(db, job, error=f"{exc.__class__.__name__}: {exc}")
        return

    mark_job_succeeded(db, job, result=result)


def idle_sleep() -> None:
    time.sleep(max(0.1, float(settings.task_queue_poll_interval_seconds)))
