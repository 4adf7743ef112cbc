"""Outbound notifications.

Every message leaves through the job queue: the ``dispatch_*`` functions only
enqueue, and the ``handle_*`` functions run inside a worker. Handlers reload
state from the database before sending, so a job that outlived the reason
it was queued completes as a no-op instead of failing.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from . import email_service, models
from .config import settings
from .email_templates import format_dt
from .logging_utils import log_event, log_warning
from .storage import FileStorage, get_storage
from .task_queue import (
    JOB_TYPE_SEND_ADMIN_NOTIFICATION,
    JOB_TYPE_SEND_EMAIL_VERIFICATION,
    JOB_TYPE_SEND_EVENT_REMINDER,
    JOB_TYPE_SEND_REGISTRATION_CONFIRMATION,
    enqueue_job,
)


ADMIN_NOTIFICATION_TYPES = ("new_event", "new_registration", "event_cancelled")
REMINDER_TYPES = ("24h", "1h")


def admin_users_query(db: Session):
    """Admins by flag or by ``settings.admin_emails``, the same policy as ``auth.is_admin``; banned users excluded."""
    predicate = models.User.is_admin.is_(True)
    if settings.admin_emails:
        predicate = or_(predicate, func.lower(models.User.email).in_(settings.admin_emails))
    return db.query(models.User).filter(predicate, models.User.is_banned.is_(False))


def is_registered(db: Session, *, event_id: int, user_id: int) -> bool:
    return (
        db.query(models.Registration.id)
        .filter(
            models.Registration.event_id == event_id,
            models.Registration.user_id == user_id,
            models.Registration.status == "registered",
        )
        .first()
        is not None
    )


def event_template_data(event: models.Event, storage: FileStorage | None = None) -> dict[str, Any]:
    storage = storage or get_storage()
    data: dict[str, Any] = {
        "event_id": event.id,
        "event_title": event.title,
        "start": format_dt(event.start_date),
        "location": event.location,
        "location_type": event.location_type,
        "virtual_link": event.virtual_link,
        "host_name": event.host.full_name if event.host else None,
    }
    if event.poster and storage.exists(event.poster):
        data["poster_url"] = storage.url(event.poster)
    return data


# Dispatch (request side)


def dispatch_safely(db: Session, kind: str, dispatch: Callable[[], Any], **context: Any) -> Any:
    """Run ``dispatch``; a failed enqueue is logged and never undoes the caller's committed work."""
    try:
        return dispatch()
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        log_warning("notification_dispatch_failed", notification=kind, error=str(exc), **context)
        return None


def dispatch_email_verification(db: Session, *, user: models.User, token: str) -> models.BackgroundJob:
    return enqueue_job(db, JOB_TYPE_SEND_EMAIL_VERIFICATION, {"user_id": user.id, "token": token})


def dispatch_registration_confirmation(
    db: Session, *, event: models.Event, user: models.User
) -> models.BackgroundJob:
    return enqueue_job(
        db,
        JOB_TYPE_SEND_REGISTRATION_CONFIRMATION,
        {"event_id": event.id, "user_id": user.id},
    )


def dispatch_event_reminder(
    db: Session,
    *,
    event: models.Event,
    user: models.User,
    reminder_type: str,
    run_at: datetime,
    dedupe_key: str | None = None,
) -> models.BackgroundJob:
    if reminder_type not in REMINDER_TYPES:
        raise ValueError(f"Unknown reminder type: {reminder_type}")
    payload: dict[str, Any] = {"event_id": event.id, "user_id": user.id, "reminder_type": reminder_type}
    if dedupe_key:
        payload["dedupe_key"] = dedupe_key
    return enqueue_job(db, JOB_TYPE_SEND_EVENT_REMINDER, payload, run_at=run_at, dedupe_key=dedupe_key)


def dispatch_admin_notification(
    db: Session,
    *,
    event: models.Event,
    notification_type: str,
    user: models.User | None = None,
) -> models.BackgroundJob | None:
    """Queue an alert for every admin; a no-op when there are no admins."""
    if notification_type not in ADMIN_NOTIFICATION_TYPES:
        raise ValueError(f"Unknown admin notification type: {notification_type}")
    if admin_users_query(db).first() is None:
        log_event("admin_notification_no_admins", event_id=event.id, notification_type=notification_type)
        return None
    payload: dict[str, Any] = {"event_id": event.id, "notification_type": notification_type}
    if user is not None:
        payload["user_id"] = user.id
    return enqueue_job(db, JOB_TYPE_SEND_ADMIN_NOTIFICATION, payload)


# Job handlers (worker side)


def handle_email_verification(*, db: Session, payload: dict[str, Any]) -> dict[str, Any]:
    user = db.get(models.User, payload.get("user_id"))
    token = (
        db.query(models.EmailVerificationToken)
        .filter(models.EmailVerificationToken.token == payload.get("token"))
        .first()
    )
    if user is None or token is None or token.used or user.account_status == "active":
        log_event("email_verification_skipped", user_id=payload.get("user_id"))
        return {"sent": False, "reason": "not_needed"}

    sent = email_service.send_templated_email(
        user.email,
        "email_verification",
        {
            "name": user.full_name,
            "verification_url": f"{settings.frontend_url.rstrip('/')}/verify-email?token={token.token}",
            "expires_in_hours": settings.email_verification_expire_hours,
        },
        context={"user_id": user.id, "notification": "email_verification"},
    )
    return {"sent": sent}


def handle_registration_confirmation(*, db: Session, payload: dict[str, Any]) -> dict[str, Any]:
    event_id = payload.get("event_id")
    user_id = payload.get("user_id")
    event = db.get(models.Event, event_id)
    user = db.get(models.User, user_id)
    if event is None or user is None or not is_registered(db, event_id=event_id, user_id=user_id):
        log_event("registration_confirmation_skipped", event_id=event_id, user_id=user_id)
        return {"sent": False, "reason": "not_registered"}

    data = event_template_data(event)
    data["name"] = user.full_name
    sent = email_service.send_templated_email(
        user.email,
        "event_registration_confirmation",
        data,
        context={"user_id": user.id, "event_id": event.id, "notification": "registration_confirmation"},
    )
    return {"sent": sent}


def handle_event_reminder(*, db: Session, payload: dict[str, Any]) -> dict[str, Any]:
    event_id = payload.get("event_id")
    user_id = payload.get("user_id")
    reminder_type = payload.get("reminder_type")
    context = {"event_id": event_id, "user_id": user_id, "reminder_type": reminder_type}

    event = db.get(models.Event, event_id)
    user = db.get(models.User, user_id)
    if event is None or user is None:
        log_event("event_reminder_skipped", reason="missing", **context)
        return {"sent": False, "reason": "missing"}
    if not is_registered(db, event_id=event.id, user_id=user.id):
        log_event("event_reminder_skipped", reason="not_registered", **context)
        return {"sent": False, "reason": "not_registered"}
    if not event.is_active or event.deleted_at is not None:
        log_event("event_reminder_skipped", reason="event_inactive", status=event.status, **context)
        return {"sent": False, "reason": "event_inactive"}

    dedupe_key = payload.get("dedupe_key")
    if dedupe_key:
        already_sent = (
            db.query(models.NotificationDelivery.id)
            .filter(models.NotificationDelivery.dedupe_key == dedupe_key)
            .first()
            is not None
        )
        if already_sent:
            log_event("event_reminder_skipped", reason="already_sent", **context)
            return {"sent": False, "reason": "already_sent"}

    data = event_template_data(event)
    data["name"] = user.full_name
    data["reminder_type"] = reminder_type
    sent = email_service.send_templated_email(
        user.email,
        "event_reminder",
        data,
        context={**context, "notification": "event_reminder"},
    )

    # Only a delivered reminder closes the dedupe key.
    if dedupe_key and sent:
        db.add(
            models.NotificationDelivery(
                dedupe_key=dedupe_key,
                notification_type=f"event_reminder_{reminder_type}",
                user_id=user.id,
                event_id=event.id,
                sent_at=datetime.now(timezone.utc),
            )
        )
        db.commit()
    return {"sent": sent}


def handle_admin_notification(*, db: Session, payload: dict[str, Any]) -> dict[str, Any]:
    event_id = payload.get("event_id")
    notification_type = payload.get("notification_type")
    event = db.get(models.Event, event_id)
    if event is None:
        log_event("admin_notification_skipped", reason="event_missing", event_id=event_id)
        return {"admins": 0, "sent": 0}

    admins = admin_users_query(db).order_by(models.User.id.asc()).all()
    if not admins:
        log_warning("admin_notification_no_admins", event_id=event_id, notification_type=notification_type)
        return {"admins": 0, "sent": 0}

    registrant = db.get(models.User, payload["user_id"]) if payload.get("user_id") else None
    data = event_template_data(event)
    data["notification_type"] = notification_type
    if registrant is not None:
        data["user_name"] = registrant.full_name
        data["user_email"] = registrant.email

    sent = 0
    for admin in admins:
        if email_service.send_templated_email(
            admin.email,
            "admin_event_notification",
            {**data, "admin_name": admin.full_name},
            context={"event_id": event_id, "notification_type": notification_type, "admin_id": admin.id},
        ):
            sent += 1
    log_event(
        "admin_notifications_sent",
        event_id=event_id,
        notification_type=notification_type,
        admin_count=len(admins),
    )
    return {"admins": len(admins), "sent": sent}
