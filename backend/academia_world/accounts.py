from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from . import auth, models
from .config import settings
from .events import normalize_dt
from .exceptions import EmailTakenError, InvalidVerificationTokenError
from .logging_utils import log_event
from .notifications import dispatch_email_verification, dispatch_safely


def create_account(
    db: Session,
    *,
    email: str,
    password: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    institution: Optional[str] = None,
) -> models.User:
    email = email.strip().lower()
    if db.query(models.User.id).filter(models.User.email == email).first() is not None:
        raise EmailTakenError()

    user = models.User(
        email=email,
        password_hash=auth.get_password_hash(password),
        first_name=first_name,
        last_name=last_name,
        institution=institution,
        account_status="pending",
    )
    db.add(user)
    db.flush()
    token = models.EmailVerificationToken(
        user_id=user.id,
        token=secrets.token_urlsafe(32),
        expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.email_verification_expire_hours),
    )
    db.add(token)
    db.commit()
    db.refresh(user)
    log_event("user_registered", user_id=user.id, email=user.email)

    dispatch_safely(
        db,
        "email_verification",
        lambda: dispatch_email_verification(db, user=user, token=token.token),
        user_id=user.id,
    )
    return user


def verify_email(db: Session, *, token: str) -> models.User:
    record = (
        db.query(models.EmailVerificationToken)
        .filter(models.EmailVerificationToken.token == token, models.EmailVerificationToken.used.is_(False))
        .first()
    )
    now = datetime.now(timezone.utc)
    if record is None or normalize_dt(record.expires_at) < now:
        raise InvalidVerificationTokenError()

    user = record.user
    record.used = True
    user.account_status = "active"
    user.email_verified_at = now
    db.commit()
    db.refresh(user)
    log_event("email_verified", user_id=user.id)
    return user


def authenticate(db: Session, *, email: str, password: str) -> Optional[models.User]:
    user = db.query(models.User).filter(models.User.email == email.strip().lower()).first()
    if user is None or not auth.verify_password(password, user.password_hash):
        return None
    return user
