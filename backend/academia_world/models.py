import uuid

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    TIMESTAMP,
    ForeignKey,
    UniqueConstraint,
    func,
    Boolean,
    JSON,
    event,
)
from sqlalchemy.orm import relationship

from .database import Base


ACTIVE_EVENT_STATUSES = ("published", "completed")


def _new_uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, nullable=False, default=_new_uuid)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    institution = Column(String(255))
    department = Column(String(255))
    position = Column(String(255))
    bio = Column(Text)
    avatar = Column(String(500))
    account_status = Column(String(20), nullable=False, server_default="pending")
    email_verified_at = Column(TIMESTAMP(timezone=True), nullable=True)
    is_admin = Column(Boolean, nullable=False, server_default="false", default=False, index=True)
    is_banned = Column(Boolean, nullable=False, server_default="false", default=False)
    ban_reason = Column(Text, nullable=True)
    banned_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    hosted_events = relationship("Event", back_populates="host", foreign_keys="Event.host_id")
    registrations = relationship(
        "Registration",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email


class EmailVerificationToken(Base):
    __tablename__ = "email_verification_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token = Column(String(255), unique=True, nullable=False)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)
    used = Column(Boolean, server_default="false", default=False, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User")


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, nullable=False, default=_new_uuid)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    start_date = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    end_date = Column(TIMESTAMP(timezone=True), nullable=True)
    timezone = Column(String(64), nullable=False, server_default="UTC", default="UTC")
    location_type = Column(String(20), nullable=False, server_default="physical", default="physical")
    location = Column(String(255))
    virtual_link = Column(String(500))
    capacity = Column(Integer, nullable=True)
    poster = Column(String(500))
    status = Column(String(20), nullable=False, server_default="published", default="published", index=True)
    visibility = Column(String(20), nullable=False, server_default="public", default="public")
    moderated_at = Column(TIMESTAMP(timezone=True), nullable=True)
    moderated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    moderation_reason = Column(Text, nullable=True)
    ban_reason = Column(Text, nullable=True)
    banned_at = Column(TIMESTAMP(timezone=True), nullable=True)
    banned_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    deleted_at = Column(TIMESTAMP(timezone=True), nullable=True, index=True)

    host = relationship("User", back_populates="hosted_events", foreign_keys=[host_id])
    registrations = relationship("Registration", back_populates="event", cascade="all, delete-orphan")
    forums = relationship("DiscussionForum", back_populates="event", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_EVENT_STATUSES

    @property
    def is_banned(self) -> bool:
        return self.status == "banned"


class Registration(Base):
    __tablename__ = "event_registrations"
    __table_args__ = (UniqueConstraint("user_id", "event_id", name="uq_event_registration"),)

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, nullable=False, default=_new_uuid)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, server_default="registered", default="registered")
    registered_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    notes = Column(Text, nullable=True)

    user = relationship("User", back_populates="registrations")
    event = relationship("Event", back_populates="registrations")


class UserConnection(Base):
    __tablename__ = "user_connections"

    id = Column(Integer, primary_key=True, index=True)
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    addressee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, server_default="pending", default="pending")
    message = Column(Text, nullable=True)
    responded_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    requester = relationship("User", foreign_keys=[requester_id])
    addressee = relationship("User", foreign_keys=[addressee_id])


class DiscussionForum(Base):
    __tablename__ = "discussion_forums"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    forum_type = Column(String(20), nullable=False, server_default="general", default="general")
    is_active = Column(Boolean, nullable=False, server_default="true", default=True)
    is_moderated = Column(Boolean, nullable=False, server_default="false", default=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    event = relationship("Event", back_populates="forums")
    posts = relationship("ForumPost", back_populates="forum", cascade="all, delete-orphan")


class ForumPost(Base):
    __tablename__ = "forum_posts"

    id = Column(Integer, primary_key=True, index=True)
    forum_id = Column(Integer, ForeignKey("discussion_forums.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    forum = relationship("DiscussionForum", back_populates="posts")
    author = relationship("User")


class AdminLog(Base):
    __tablename__ = "admin_logs"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, nullable=False, default=_new_uuid)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)
    target_type = Column(String(50), nullable=False, index=True)
    target_id = Column(Integer, nullable=False, index=True)
    reason = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    changes = Column(JSON, nullable=True)
    meta = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    severity = Column(String(20), nullable=False, server_default="info", default="info")
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False, index=True)

    admin = relationship("User", foreign_keys=[admin_id])


@event.listens_for(AdminLog, "before_update")
def _admin_log_is_immutable(_mapper, _connection, target):  # noqa: ANN001
    raise RuntimeError(f"admin_logs rows are append-only (id={target.id})")


@event.listens_for(AdminLog, "before_delete")
def _admin_log_is_undeletable(_mapper, _connection, target):  # noqa: ANN001
    raise RuntimeError(f"admin_logs rows are append-only (id={target.id})")


class BackgroundJob(Base):
    __tablename__ = "background_jobs"
    __table_args__ = (UniqueConstraint("job_type", "dedupe_key", name="uq_background_job_dedupe_key"),)

    id = Column(Integer, primary_key=True, index=True)
    job_type = Column(String(50), nullable=False, index=True)
    dedupe_key = Column(String(200), nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, index=True, server_default="queued")
    attempts = Column(Integer, nullable=False, server_default="0")
    max_attempts = Column(Integer, nullable=False, server_default="3")
    run_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False, index=True)
    locked_at = Column(TIMESTAMP(timezone=True), nullable=True)
    locked_by = Column(String(100), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    finished_at = Column(TIMESTAMP(timezone=True), nullable=True)


class NotificationDelivery(Base):
    __tablename__ = "notification_deliveries"
    __table_args__ = (UniqueConstraint("dedupe_key", name="uq_notification_delivery_dedupe_key"),)

    id = Column(Integer, primary_key=True, index=True)
    dedupe_key = Column(String(200), nullable=False)
    notification_type = Column(String(50), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, nullable=True, index=True)
    sent_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    meta = Column(JSON, nullable=True)
