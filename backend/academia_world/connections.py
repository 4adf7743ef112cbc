from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from . import models
from .exceptions import (
    ConnectionAlreadyRespondedError,
    DuplicateConnectionError,
    ForbiddenError,
    NotFoundError,
    SelfConnectionError,
)
from .logging_utils import log_event


def _between(user_a_id: int, user_b_id: int):
    return or_(
        and_(models.UserConnection.requester_id == user_a_id, models.UserConnection.addressee_id == user_b_id),
        and_(models.UserConnection.requester_id == user_b_id, models.UserConnection.addressee_id == user_a_id),
    )


def send_connection_request(
    db: Session,
    *,
    requester: models.User,
    addressee_id: int,
    message: Optional[str] = None,
) -> models.UserConnection:
    if requester.id == addressee_id:
        raise SelfConnectionError()
    if db.get(models.User, addressee_id) is None:
        raise NotFoundError("User not found.")

    # A declined request does not block a new one.
    existing = (
        db.query(models.UserConnection.id)
        .filter(_between(requester.id, addressee_id), models.UserConnection.status.in_(["pending", "accepted"]))
        .first()
    )
    if existing is not None:
        raise DuplicateConnectionError()

    connection = models.UserConnection(
        requester_id=requester.id,
        addressee_id=addressee_id,
        status="pending",
        message=message,
    )
    db.add(connection)
    db.commit()
    db.refresh(connection)
    log_event("connection_requested", connection_id=connection.id, requester_id=requester.id, addressee_id=addressee_id)
    return connection


def _get_connection_or_404(db: Session, connection_id: int) -> models.UserConnection:
    connection = db.get(models.UserConnection, connection_id)
    if connection is None:
        raise NotFoundError("Connection not found.")
    return connection


def respond_to_connection(
    db: Session,
    *,
    connection_id: int,
    user: models.User,
    accept: bool,
) -> models.UserConnection:
    connection = _get_connection_or_404(db, connection_id)
    if connection.addressee_id != user.id:
        raise ForbiddenError("Unauthorized to respond to this connection request")
    if connection.status != "pending":
        raise ConnectionAlreadyRespondedError()

    connection.status = "accepted" if accept else "declined"
    connection.responded_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(connection)
    log_event("connection_responded", connection_id=connection.id, user_id=user.id, status=connection.status)
    return connection


def remove_connection(db: Session, *, connection_id: int, user: models.User) -> None:
    connection = _get_connection_or_404(db, connection_id)
    if user.id not in (connection.requester_id, connection.addressee_id):
        raise ForbiddenError("Unauthorized to remove this connection")
    db.delete(connection)
    db.commit()
    log_event("connection_removed", connection_id=connection_id, user_id=user.id)


def list_connections(
    db: Session,
    *,
    user: models.User,
    status: Optional[str] = None,
) -> list[models.UserConnection]:
    query = db.query(models.UserConnection).filter(
        or_(models.UserConnection.requester_id == user.id, models.UserConnection.addressee_id == user.id)
    )
    if status:
        query = query.filter(models.UserConnection.status == status)
    return query.order_by(models.UserConnection.created_at.desc(), models.UserConnection.id.desc()).all()
