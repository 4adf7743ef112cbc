"""Periodic sweep that queues staggered reminders for upcoming events.

An external scheduler runs the sweep every few minutes. Each run looks at two
windows around ``now + 24h`` (+/- 15 min) and ``now + 1h`` (+/- 5 min) and
queues one reminder per registered attendee, delayed by a random number of
minutes so sends do not all fire at once.

Two runs inside the same window queue the same reminders twice unless
``settings.reminder_dedupe_enabled`` is set, in which case a reminder that is
already queued or already delivered is skipped.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from . import models
from .config import settings
from .logging_utils import log_event
from .notifications import dispatch_event_reminder
from .task_queue import JOB_TYPE_SEND_EVENT_REMINDER


REMINDER_WINDOWS: dict[str, dict[str, Any]] = {
    "24h": {"lead": timedelta(hours=24), "tolerance": timedelta(minutes=15), "jitter_minutes": (1, 10)},
    "1h": {"lead": timedelta(hours=1), "tolerance": timedelta(minutes=5), "jitter_minutes": (1, 3)},
}


def reminder_dedupe_key(reminder_type: str, event_id: int, user_id: int) -> str:
    return f"reminder:{reminder_type}:{event_id}:{user_id}"


def events_in_window(db: Session, *, now: datetime, lead: timedelta, tolerance: timedelta) -> list[models.Event]:
    center = now + lead
    return (
        db.query(models.Event)
        .filter(
            models.Event.status == "published",
            models.Event.deleted_at.is_(None),
            models.Event.start_date >= center - tolerance,
            models.Event.start_date <= center + tolerance,
        )
        .order_by(models.Event.start_date.asc(), models.Event.id.asc())
        .all()
    )


def registered_users(db: Session, event: models.Event) -> list[models.User]:
    return (
        db.query(models.User)
        .join(models.Registration, models.Registration.user_id == models.User.id)
        .filter(models.Registration.event_id == event.id, models.Registration.status == "registered")
        .order_by(models.User.id.asc())
        .all()
    )


def _already_handled(db: Session, dedupe_key: str) -> bool:
    delivered = (
        db.query(models.NotificationDelivery.id)
        .filter(models.NotificationDelivery.dedupe_key == dedupe_key)
        .first()
    )
    if delivered is not None:
        return True
    pending = (
        db.query(models.BackgroundJob.id)
        .filter(
            models.BackgroundJob.job_type == JOB_TYPE_SEND_EVENT_REMINDER,
            models.BackgroundJob.dedupe_key == dedupe_key,
            models.BackgroundJob.status.in_(["queued", "running"]),
        )
        .first()
    )
    return pending is not None


def schedule_event_reminders(
    db: Session,
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
    dedupe: bool | None = None,
) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    rng = rng or random.Random()
    dedupe = settings.reminder_dedupe_enabled if dedupe is None else dedupe

    scheduled = 0
    window_counts: dict[str, int] = {}
    for reminder_type, window in REMINDER_WINDOWS.items():
        events = events_in_window(db, now=now, lead=window["lead"], tolerance=window["tolerance"])
        window_counts[reminder_type] = len(events)
        low, high = window["jitter_minutes"]
        for event in events:
            users = registered_users(db, event)
            queued_for_event = 0
            for user in users:
                dedupe_key = None
                if dedupe:
                    dedupe_key = reminder_dedupe_key(reminder_type, event.id, user.id)
                    if _already_handled(db, dedupe_key):
                        continue
                dispatch_event_reminder(
                    db,
                    event=event,
                    user=user,
                    reminder_type=reminder_type,
                    run_at=now + timedelta(minutes=rng.randint(low, high)),
                    dedupe_key=dedupe_key,
                )
                queued_for_event += 1
            scheduled += queued_for_event
            log_event(
                "event_reminders_queued_for_event",
                event_id=event.id,
                reminder_type=reminder_type,
                registered_users=len(users),
                queued=queued_for_event,
            )

    result = {
        "scheduled": scheduled,
        "events_24h": window_counts.get("24h", 0),
        "events_1h": window_counts.get("1h", 0),
    }
    log_event("event_reminders_scheduled", dedupe=dedupe, **result)
    return result


def handle_schedule_event_reminders(*, db: Session, payload: dict[str, Any]) -> dict[str, int]:
    return schedule_event_reminders(db)
