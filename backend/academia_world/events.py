from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .exceptions import (
    EventBannedError,
    ForbiddenError,
    InvalidEventError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from .logging_utils import log_event
from .notifications import dispatch_admin_notification, dispatch_safely


# Host-driven transitions only move forward; ban/unban is the admin's to make.
HOST_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"published", "cancelled"},
    "published": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
    "banned": set(),
}

EDITABLE_FIELDS = (
    "title",
    "description",
    "start_date",
    "end_date",
    "timezone",
    "location_type",
    "location",
    "virtual_link",
    "capacity",
    "poster",
    "visibility",
)


def normalize_dt(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_event_or_404(
    db: Session,
    event_id: int,
    *,
    for_update: bool = False,
    include_deleted: bool = False,
) -> models.Event:
    query = db.query(models.Event).filter(models.Event.id == event_id)
    if not include_deleted:
        query = query.filter(models.Event.deleted_at.is_(None))
    if for_update and db.bind and db.bind.dialect.name == "postgresql":
        query = query.with_for_update()
    event = query.first()
    if event is None:
        raise NotFoundError("Event not found.")
    return event


def registered_count(db: Session, event_id: int) -> int:
    return int(
        db.query(func.count(models.Registration.id))
        .filter(models.Registration.event_id == event_id, models.Registration.status == "registered")
        .scalar()
        or 0
    )


def ensure_status_transition(event: models.Event, new_status: str) -> None:
    if new_status == event.status:
        return
    if new_status not in HOST_STATUS_TRANSITIONS.get(event.status, set()):
        raise InvalidStatusTransitionError(f"Cannot change event status from {event.status} to {new_status}.")


def ensure_host_can_edit(event: models.Event, user: models.User) -> None:
    if event.host_id != user.id:
        raise ForbiddenError("Unauthorized to modify this event")
    if event.is_banned:
        raise EventBannedError()


def _validate_schedule(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    if end_date and start_date and end_date <= start_date:
        raise InvalidEventError("End date must be after start date.")


def _validate_capacity(capacity: Optional[int]) -> None:
    if capacity is not None and capacity <= 0:
        raise InvalidEventError("Capacity must be a positive number.")


def create_event(db: Session, *, host: models.User, data: dict[str, Any]) -> models.Event:
    fields = {key: data[key] for key in EDITABLE_FIELDS if data.get(key) is not None}
    fields["start_date"] = normalize_dt(fields.get("start_date"))
    fields["end_date"] = normalize_dt(fields.get("end_date"))
    if fields["start_date"] is None:
        raise InvalidEventError("Start date is required.")
    if fields["start_date"] <= datetime.now(timezone.utc):
        raise InvalidEventError("Start date must be in the future.")
    _validate_schedule(fields["start_date"], fields["end_date"])
    _validate_capacity(fields.get("capacity"))

    event = models.Event(host_id=host.id, status="published", **fields)
    db.add(event)
    db.commit()
    db.refresh(event)
    log_event("event_created", event_id=event.id, host_id=host.id)

    dispatch_safely(
        db,
        "admin_new_event",
        lambda: dispatch_admin_notification(db, event=event, notification_type="new_event"),
        event_id=event.id,
    )
    return event


def update_event(db: Session, *, event_id: int, user: models.User, changes: dict[str, Any]) -> models.Event:
    event = get_event_or_404(db, event_id)
    ensure_host_can_edit(event, user)

    updates = {key: changes[key] for key in EDITABLE_FIELDS if changes.get(key) is not None}
    for key in ("start_date", "end_date"):
        if key in updates:
            updates[key] = normalize_dt(updates[key])
    _validate_schedule(
        updates.get("start_date") or normalize_dt(event.start_date),
        updates.get("end_date") or normalize_dt(event.end_date),
    )
    _validate_capacity(updates.get("capacity"))

    new_status = changes.get("status")
    cancelled = False
    if new_status is not None:
        ensure_status_transition(event, new_status)
        cancelled = new_status == "cancelled" and event.status != "cancelled"

    for key, value in updates.items():
        setattr(event, key, value)
    if new_status is not None:
        event.status = new_status

    db.commit()
    db.refresh(event)
    log_event("event_updated", event_id=event.id, host_id=event.host_id, status=event.status)
    if cancelled:
        _notify_cancelled(db, event)
    return event


def cancel_event(db: Session, *, event_id: int, user: models.User) -> models.Event:
    return update_event(db, event_id=event_id, user=user, changes={"status": "cancelled"})


def delete_event(db: Session, *, event_id: int, user: models.User) -> None:
    event = get_event_or_404(db, event_id)
    ensure_host_can_edit(event, user)
    event.deleted_at = datetime.now(timezone.utc)
    db.commit()
    log_event("event_soft_deleted", event_id=event.id, host_id=event.host_id)


def _notify_cancelled(db: Session, event: models.Event) -> None:
    dispatch_safely(
        db,
        "admin_event_cancelled",
        lambda: dispatch_admin_notification(db, event=event, notification_type="event_cancelled"),
        event_id=event.id,
    )
