"""Event registration: capacity, duplicate and self-registration rules.

Registration rows are unique per (user, event) at the database level, so two
concurrent attempts by the same user cannot both commit. On Postgres the event
row is locked for the duration of the capacity check.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .events import get_event_or_404, registered_count
from .exceptions import (
    DuplicateRegistrationError,
    EventFullError,
    EventNotActiveError,
    NotRegisteredError,
    SelfRegistrationError,
)
from .logging_utils import log_event
from .notifications import (
    dispatch_admin_notification,
    dispatch_registration_confirmation,
    dispatch_safely,
)


def register_for_event(
    db: Session,
    *,
    event_id: int,
    user: models.User,
    notes: Optional[str] = None,
) -> models.Registration:
    event = get_event_or_404(db, event_id, for_update=True)
    if event.host_id == user.id:
        raise SelfRegistrationError()
    if event.status != "published":
        raise EventNotActiveError()

    existing = (
        db.query(models.Registration)
        .filter(models.Registration.event_id == event.id, models.Registration.user_id == user.id)
        .first()
    )
    if existing is not None and existing.status == "registered":
        raise DuplicateRegistrationError()
    if event.capacity is not None and registered_count(db, event.id) >= event.capacity:
        raise EventFullError()

    now = datetime.now(timezone.utc)
    if existing is not None:
        # A cancelled row still occupies the (user, event) slot; reactivate it.
        registration = existing
        registration.uuid = str(uuid.uuid4())
        registration.status = "registered"
        registration.registered_at = now
        registration.notes = notes
    else:
        registration = models.Registration(
            uuid=str(uuid.uuid4()),
            user_id=user.id,
            event_id=event.id,
            status="registered",
            registered_at=now,
            notes=notes,
        )
        db.add(registration)

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateRegistrationError() from exc
    db.refresh(registration)
    log_event("registration_created", event_id=event.id, user_id=user.id, registration_id=registration.id)

    # Both jobs are queued only after the row is committed.
    dispatch_safely(
        db,
        "registration_confirmation",
        lambda: dispatch_registration_confirmation(db, event=event, user=user),
        event_id=event.id,
        user_id=user.id,
    )
    dispatch_safely(
        db,
        "admin_new_registration",
        lambda: dispatch_admin_notification(db, event=event, notification_type="new_registration", user=user),
        event_id=event.id,
        user_id=user.id,
    )
    return registration


def unregister_from_event(db: Session, *, event_id: int, user: models.User) -> None:
    event = get_event_or_404(db, event_id)
    registration = (
        db.query(models.Registration)
        .filter(
            models.Registration.event_id == event.id,
            models.Registration.user_id == user.id,
            models.Registration.status == "registered",
        )
        .first()
    )
    if registration is None:
        raise NotRegisteredError()

    db.delete(registration)
    db.commit()
    log_event("registration_removed", event_id=event.id, user_id=user.id)
