"""Admin moderation: event ban/unban/force-delete, user ban toggle, post removal.

Callers must already have passed the admin gate (``auth.require_admin``).
Every action writes exactly one ``AdminLog`` row, committed in the same
transaction as the change it records. If that commit fails, the whole action
is rolled back and reported as ``PersistenceError``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .auth import is_admin
from .events import get_event_or_404
from .exceptions import AlreadyBannedError, ForbiddenError, NotBannedError, NotFoundError, PersistenceError
from .logging_utils import log_error, log_event


def write_admin_log(
    db: Session,
    *,
    admin: models.User,
    action: str,
    target_type: str,
    target_id: int,
    reason: Optional[str] = None,
    description: Optional[str] = None,
    changes: Optional[dict[str, Any]] = None,
    meta: Optional[dict[str, Any]] = None,
    severity: str = "info",
    ip_address: Optional[str] = None,
) -> models.AdminLog:
    entry = models.AdminLog(
        admin_id=admin.id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        reason=reason,
        description=description,
        changes=changes,
        meta=meta,
        severity=severity,
        ip_address=ip_address,
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    return entry


def _commit_moderation(db: Session, *, action: str, target_type: str, target_id: int, admin_id: int) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log_error(
            "moderation_persist_failed",
            exc_info=True,
            action=action,
            target_type=target_type,
            target_id=target_id,
            admin_id=admin_id,
        )
        raise PersistenceError() from exc


def ban_event(
    db: Session,
    *,
    event_id: int,
    admin: models.User,
    reason: str,
    ip_address: Optional[str] = None,
) -> models.Event:
    event = get_event_or_404(db, event_id)
    if event.is_banned:
        raise AlreadyBannedError()

    now = datetime.now(timezone.utc)
    previous_status = event.status
    admin_id = admin.id
    event.status = "banned"
    event.ban_reason = reason
    event.banned_at = now
    event.banned_by = admin_id
    event.moderated_at = now
    event.moderated_by = admin_id
    event.moderation_reason = reason
    write_admin_log(
        db,
        admin=admin,
        action="event_ban",
        target_type="event",
        target_id=event.id,
        reason=reason,
        description=f"Banned event: {event.title}",
        changes={"before": {"status": previous_status}, "after": {"status": "banned"}},
        meta={"previous_status": previous_status},
        severity="high",
        ip_address=ip_address,
    )
    _commit_moderation(db, action="event_ban", target_type="event", target_id=event_id, admin_id=admin_id)
    db.refresh(event)
    log_event("event_banned", event_id=event.id, admin_id=admin_id, previous_status=previous_status)
    return event


def unban_event(
    db: Session,
    *,
    event_id: int,
    admin: models.User,
    ip_address: Optional[str] = None,
) -> models.Event:
    event = get_event_or_404(db, event_id)
    if not event.is_banned:
        raise NotBannedError()

    now = datetime.now(timezone.utc)
    admin_id = admin.id
    previous_reason = event.ban_reason
    event.status = "published"
    event.ban_reason = None
    event.banned_at = None
    event.banned_by = None
    event.moderated_at = now
    event.moderated_by = admin_id
    event.moderation_reason = None
    write_admin_log(
        db,
        admin=admin,
        action="event_unban",
        target_type="event",
        target_id=event.id,
        description=f"Unbanned event: {event.title}",
        changes={"before": {"status": "banned"}, "after": {"status": "published"}},
        meta={"previous_ban_reason": previous_reason},
        severity="medium",
        ip_address=ip_address,
    )
    _commit_moderation(db, action="event_unban", target_type="event", target_id=event_id, admin_id=admin_id)
    db.refresh(event)
    log_event("event_unbanned", event_id=event.id, admin_id=admin_id)
    return event


def force_delete_event(
    db: Session,
    *,
    event_id: int,
    admin: models.User,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> dict[str, int]:
    """Hard-delete an event with its registrations, forums and posts."""
    event = get_event_or_404(db, event_id, include_deleted=True)
    admin_id = admin.id
    registrations = list(event.registrations)
    forums = list(event.forums)
    posts = sum(len(forum.posts) for forum in forums)
    summary = {"registrations_deleted": len(registrations), "forums_deleted": len(forums), "posts_deleted": posts}

    write_admin_log(
        db,
        admin=admin,
        action="event_delete",
        target_type="event",
        target_id=event.id,
        reason=reason,
        description=f"Permanently deleted event: {event.title}",
        meta={"title": event.title, "status": event.status, **summary},
        severity="critical",
        ip_address=ip_address,
    )
    # registrations, forums and posts go with the event through ORM cascades
    db.delete(event)
    _commit_moderation(db, action="event_delete", target_type="event", target_id=event_id, admin_id=admin_id)
    log_event("event_force_deleted", event_id=event_id, admin_id=admin_id, **summary)
    return summary


def ban_user(
    db: Session,
    *,
    user_id: int,
    admin: models.User,
    reason: str,
    ip_address: Optional[str] = None,
) -> models.User:
    """Toggle a user's ban: bans an unbanned user, unbans a banned one.

    Both directions are recorded as a ``user_ban`` log entry.
    """
    user = db.get(models.User, user_id)
    if user is None:
        raise NotFoundError("User not found.")
    was_banned = bool(user.is_banned)
    if not was_banned and is_admin(user):
        raise ForbiddenError("Cannot ban an admin user")

    admin_id = admin.id
    if was_banned:
        user.is_banned = False
        user.ban_reason = None
        user.banned_at = None
    else:
        user.is_banned = True
        user.ban_reason = reason
        user.banned_at = datetime.now(timezone.utc)
    write_admin_log(
        db,
        admin=admin,
        action="user_ban",
        target_type="user",
        target_id=user.id,
        reason=reason,
        description=f"User {user.full_name} was {'unbanned' if was_banned else 'banned'}",
        changes={"before": {"is_banned": was_banned}, "after": {"is_banned": not was_banned}},
        meta={"direction": "unban" if was_banned else "ban"},
        severity="info" if was_banned else "warning",
        ip_address=ip_address,
    )
    _commit_moderation(db, action="user_ban", target_type="user", target_id=user_id, admin_id=admin_id)
    db.refresh(user)
    log_event("user_ban_toggled", user_id=user.id, admin_id=admin_id, is_banned=bool(user.is_banned))
    return user


def delete_forum_post(
    db: Session,
    *,
    post_id: int,
    admin: models.User,
    reason: str,
    ip_address: Optional[str] = None,
) -> None:
    post = db.get(models.ForumPost, post_id)
    if post is None:
        raise NotFoundError("Post not found.")
    admin_id = admin.id
    snapshot = {"forum_id": post.forum_id, "user_id": post.user_id, "content": post.content}
    write_admin_log(
        db,
        admin=admin,
        action="post_delete",
        target_type="post",
        target_id=post.id,
        reason=reason,
        description="Deleted forum post",
        meta={"post_data": snapshot},
        severity="warning",
        ip_address=ip_address,
    )
    db.delete(post)
    _commit_moderation(db, action="post_delete", target_type="post", target_id=post_id, admin_id=admin_id)
    log_event("forum_post_deleted", post_id=post_id, admin_id=admin_id)


def list_admin_logs(
    db: Session,
    *,
    admin_id: Optional[int] = None,
    action: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[models.AdminLog], int]:
    query = db.query(models.AdminLog)
    if admin_id is not None:
        query = query.filter(models.AdminLog.admin_id == admin_id)
    if action:
        query = query.filter(models.AdminLog.action == action)
    if target_type:
        query = query.filter(models.AdminLog.target_type == target_type)
        if target_id is not None:
            query = query.filter(models.AdminLog.target_id == target_id)
    total = query.count()
    items = (
        query.order_by(models.AdminLog.created_at.desc(), models.AdminLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, int(total)
