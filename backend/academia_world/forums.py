"""Event discussion forums and their posts.

Hosts and admins open forums on an event. Posting is limited to the host,
registered attendees and admins, and only while the forum is active.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .auth import is_admin
from .events import get_event_or_404
from .exceptions import EventBannedError, ForbiddenError, NotFoundError
from .logging_utils import log_event
from .notifications import is_registered


FORUM_TYPES = ("general", "q_and_a", "networking", "feedback", "technical")


def get_forum_or_404(db: Session, forum_id: int) -> models.DiscussionForum:
    forum = db.get(models.DiscussionForum, forum_id)
    if forum is None or forum.event is None or forum.event.deleted_at is not None:
        raise NotFoundError("Forum not found.")
    return forum


def create_forum(
    db: Session,
    *,
    event_id: int,
    user: models.User,
    data: dict[str, Any],
) -> models.DiscussionForum:
    event = get_event_or_404(db, event_id)
    admin = is_admin(user)
    if event.host_id != user.id and not admin:
        raise ForbiddenError("You are not authorized to create forums for this event")
    if event.is_banned and not admin:
        raise EventBannedError()

    forum = models.DiscussionForum(
        event_id=event.id,
        title=data["title"],
        description=data.get("description"),
        forum_type=data.get("forum_type") or "general",
        is_moderated=bool(data.get("is_moderated", False)),
        created_by=user.id,
    )
    db.add(forum)
    db.commit()
    db.refresh(forum)
    log_event("forum_created", forum_id=forum.id, event_id=event.id, user_id=user.id, forum_type=forum.forum_type)
    return forum


def list_forums(db: Session, *, event_id: int) -> list[models.DiscussionForum]:
    event = get_event_or_404(db, event_id)
    return (
        db.query(models.DiscussionForum)
        .filter(models.DiscussionForum.event_id == event.id, models.DiscussionForum.is_active.is_(True))
        .order_by(
            models.DiscussionForum.forum_type.asc(),
            models.DiscussionForum.created_at.desc(),
            models.DiscussionForum.id.desc(),
        )
        .all()
    )


def post_count(db: Session, forum_id: int) -> int:
    return int(
        db.query(func.count(models.ForumPost.id)).filter(models.ForumPost.forum_id == forum_id).scalar() or 0
    )


def can_user_post(db: Session, forum: models.DiscussionForum, user: models.User) -> bool:
    if not forum.is_active:
        return False
    if is_admin(user):
        return True
    event = forum.event
    return event.host_id == user.id or is_registered(db, event_id=event.id, user_id=user.id)


def create_post(db: Session, *, forum_id: int, user: models.User, content: str) -> models.ForumPost:
    forum = get_forum_or_404(db, forum_id)
    if not can_user_post(db, forum, user):
        raise ForbiddenError("You are not authorized to post in this forum")

    post = models.ForumPost(forum_id=forum.id, user_id=user.id, content=content)
    db.add(post)
    db.commit()
    db.refresh(post)
    log_event("forum_post_created", post_id=post.id, forum_id=forum.id, user_id=user.id)
    return post


def list_posts(
    db: Session,
    *,
    forum_id: int,
    page: int = 1,
    page_size: int = 20,
    author_id: Optional[int] = None,
) -> tuple[list[models.ForumPost], int]:
    forum = get_forum_or_404(db, forum_id)
    query = db.query(models.ForumPost).filter(models.ForumPost.forum_id == forum.id)
    if author_id is not None:
        query = query.filter(models.ForumPost.user_id == author_id)
    total = query.count()
    items = (
        query.order_by(models.ForumPost.created_at.asc(), models.ForumPost.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, int(total)
