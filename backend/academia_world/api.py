from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from . import accounts, auth, connections, events, forums, models, moderation, registrations, schemas
from .config import settings
from .database import Base, engine, get_db
from .exceptions import DomainError
from .logging_utils import RequestIdMiddleware, configure_logging, log_error, log_event, log_warning
from .task_queue import JOB_TYPE_SCHEDULE_EVENT_REMINDERS, enqueue_job

configure_logging()


def _run_migrations():
    """Run Alembic migrations to latest head. Controlled via settings.auto_run_migrations."""
    try:
        from alembic import command
        from alembic.config import Config

        base_dir = Path(__file__).resolve().parent.parent
        alembic_ini = base_dir / "alembic.ini"
        if not alembic_ini.exists():
            log_warning("migrations_skipped", reason="alembic.ini not found")
            return
        cfg = Config(str(alembic_ini))
        cfg.set_main_option("script_location", str(base_dir / "alembic"))
        command.upgrade(cfg, "head")
        log_event("migrations_applied")
    except Exception:  # noqa: BLE001
        log_error("migrations_failed", exc_info=True)


def _check_configuration():
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is required")
    if not settings.secret_key:
        raise RuntimeError("SECRET_KEY is required")
    if settings.email_enabled and (not settings.smtp_host or not settings.smtp_sender):
        log_warning("email_smtp_not_configured", action="disabling email sending")
        settings.email_enabled = False


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _check_configuration()
    if settings.auto_run_migrations:
        _run_migrations()
    elif settings.auto_create_tables:
        Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Academia World API", version="1.0.0", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _serialize_event(db: Session, event: models.Event) -> schemas.EventResponse:
    response = schemas.EventResponse.model_validate(event)
    response.registered_count = events.registered_count(db, event.id)
    return response


def _token_response(user: models.User) -> dict:
    access_token = auth.create_access_token(
        data={"sub": str(user.id), "email": user.email},
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
    )
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user_id": user.id,
        "is_admin": auth.is_admin(user),
    }


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    code = f"http_{exc.status_code}"
    message = exc.detail if isinstance(exc.detail, str) else "Error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": code, "message": message}, "detail": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        log_error("domain_error", code=exc.code, path=request.url.path, message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}, "detail": exc.message},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log_error("unhandled_exception", exc_info=True, path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {"code": "internal_error", "message": "An unexpected error occurred."},
            "detail": "An unexpected error occurred.",
        },
    )


@app.get("/")
def read_root():
    return {"message": "Hello from Academia World API!"}


@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


# Accounts


@app.post("/register", response_model=schemas.UserResponse, status_code=status.HTTP_201_CREATED)
def register(payload: schemas.UserCreate, db: Session = Depends(get_db)):
    return accounts.create_account(
        db,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        institution=payload.institution,
    )


@app.post("/verify-email", response_model=schemas.UserResponse)
def verify_email(payload: schemas.VerifyEmailRequest, db: Session = Depends(get_db)):
    return accounts.verify_email(db, token=payload.token)


@app.post("/login", response_model=schemas.Token)
def login(user_credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    user = accounts.authenticate(db, email=user_credentials.email, password=user_credentials.password)
    if user is None:
        log_warning("login_failed", email=user_credentials.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    log_event("login_success", user_id=user.id, email=user.email)
    return _token_response(user)


@app.get("/me", response_model=schemas.UserResponse)
def get_me(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


# Events


@app.get("/api/events", response_model=schemas.PaginatedEvents)
def list_events(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = db.query(models.Event).filter(
        models.Event.status == "published",
        models.Event.visibility == "public",
        models.Event.deleted_at.is_(None),
    )
    total = query.count()
    rows = (
        query.order_by(models.Event.start_date.asc(), models.Event.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    items = [_serialize_event(db, event) for event in rows]
    return {"items": items, "total": int(total), "page": page, "page_size": page_size}


@app.get("/api/events/{event_id}", response_model=schemas.EventResponse)
def get_event(event_id: int, db: Session = Depends(get_db)):
    return _serialize_event(db, events.get_event_or_404(db, event_id))


@app.post("/api/events", response_model=schemas.EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: schemas.EventCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    event = events.create_event(db, host=current_user, data=payload.model_dump())
    return _serialize_event(db, event)


@app.put("/api/events/{event_id}", response_model=schemas.EventResponse)
def update_event(
    event_id: int,
    payload: schemas.EventUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    event = events.update_event(
        db, event_id=event_id, user=current_user, changes=payload.model_dump(exclude_unset=True)
    )
    return _serialize_event(db, event)


@app.post("/api/events/{event_id}/cancel", response_model=schemas.EventResponse)
def cancel_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    return _serialize_event(db, events.cancel_event(db, event_id=event_id, user=current_user))


@app.delete("/api/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    events.delete_event(db, event_id=event_id, user=current_user)


@app.post(
    "/api/events/{event_id}/register",
    response_model=schemas.RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
)
def register_for_event(
    event_id: int,
    payload: Optional[schemas.RegistrationRequest] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    return registrations.register_for_event(
        db,
        event_id=event_id,
        user=current_user,
        notes=payload.notes if payload else None,
    )


@app.delete("/api/events/{event_id}/unregister")
def unregister_from_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    registrations.unregister_from_event(db, event_id=event_id, user=current_user)
    return {"message": "Successfully unregistered from event"}


# Connections


@app.get("/api/connections", response_model=List[schemas.ConnectionResponse])
def list_connections(
    status_filter: Optional[str] = Query(default=None, alias="status", pattern="^(pending|accepted|declined)$"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return connections.list_connections(db, user=current_user, status=status_filter)


@app.post("/api/connections", response_model=schemas.ConnectionResponse, status_code=status.HTTP_201_CREATED)
def send_connection_request(
    payload: schemas.ConnectionCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    return connections.send_connection_request(
        db, requester=current_user, addressee_id=payload.addressee_id, message=payload.message
    )


@app.put("/api/connections/{connection_id}", response_model=schemas.ConnectionResponse)
def respond_to_connection(
    connection_id: int,
    payload: schemas.ConnectionRespond,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    return connections.respond_to_connection(
        db, connection_id=connection_id, user=current_user, accept=payload.action == "accept"
    )


@app.delete("/api/connections/{connection_id}")
def remove_connection(
    connection_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    connections.remove_connection(db, connection_id=connection_id, user=current_user)
    return {"message": "Connection removed"}


# Forums


def _serialize_forum(db: Session, forum: models.DiscussionForum) -> schemas.ForumResponse:
    response = schemas.ForumResponse.model_validate(forum)
    response.post_count = forums.post_count(db, forum.id)
    return response


@app.get("/api/events/{event_id}/forums", response_model=List[schemas.ForumResponse])
def list_event_forums(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return [_serialize_forum(db, forum) for forum in forums.list_forums(db, event_id=event_id)]


@app.post(
    "/api/events/{event_id}/forums", response_model=schemas.ForumResponse, status_code=status.HTTP_201_CREATED
)
def create_event_forum(
    event_id: int,
    payload: schemas.ForumCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    forum = forums.create_forum(db, event_id=event_id, user=current_user, data=payload.model_dump())
    return _serialize_forum(db, forum)


@app.get("/api/forums/{forum_id}", response_model=schemas.ForumResponse)
def get_forum(
    forum_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return _serialize_forum(db, forums.get_forum_or_404(db, forum_id))


@app.get("/api/forums/{forum_id}/posts", response_model=schemas.PaginatedForumPosts)
def list_forum_posts(
    forum_id: int,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    items, total = forums.list_posts(db, forum_id=forum_id, page=page, page_size=page_size)
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@app.post(
    "/api/forums/{forum_id}/posts", response_model=schemas.ForumPostResponse, status_code=status.HTTP_201_CREATED
)
def create_forum_post(
    forum_id: int,
    payload: schemas.ForumPostCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_active_user),
):
    return forums.create_post(db, forum_id=forum_id, user=current_user, content=payload.content)


# Admin moderation


@app.post("/api/admin/events/{event_id}/ban", response_model=schemas.EventResponse)
def admin_ban_event(
    event_id: int,
    payload: schemas.BanRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    event = moderation.ban_event(
        db, event_id=event_id, admin=current_user, reason=payload.reason, ip_address=_client_ip(request)
    )
    return _serialize_event(db, event)


@app.post("/api/admin/events/{event_id}/unban", response_model=schemas.EventResponse)
def admin_unban_event(
    event_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    event = moderation.unban_event(db, event_id=event_id, admin=current_user, ip_address=_client_ip(request))
    return _serialize_event(db, event)


@app.delete("/api/admin/events/{event_id}/force-delete", response_model=schemas.ForceDeleteResponse)
def admin_force_delete_event(
    event_id: int,
    request: Request,
    payload: Optional[schemas.ForceDeleteRequest] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    summary = moderation.force_delete_event(
        db,
        event_id=event_id,
        admin=current_user,
        reason=payload.reason if payload else None,
        ip_address=_client_ip(request),
    )
    return {"message": "Event permanently deleted", **summary}


@app.put("/api/admin/users/{user_id}/ban", response_model=schemas.UserBanResponse)
def admin_toggle_user_ban(
    user_id: int,
    payload: schemas.BanRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    return moderation.ban_user(
        db, user_id=user_id, admin=current_user, reason=payload.reason, ip_address=_client_ip(request)
    )


@app.delete("/api/admin/posts/{post_id}")
def admin_delete_post(
    post_id: int,
    payload: schemas.BanRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    moderation.delete_forum_post(
        db, post_id=post_id, admin=current_user, reason=payload.reason, ip_address=_client_ip(request)
    )
    return {"message": "Post deleted"}


@app.get("/api/admin/logs", response_model=schemas.PaginatedAdminLogs)
def admin_list_logs(
    admin_id: Optional[int] = None,
    action: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    items, total = moderation.list_admin_logs(
        db,
        admin_id=admin_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        page=page,
        page_size=page_size,
    )
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@app.get("/api/admin/jobs", response_model=List[schemas.BackgroundJobResponse])
def admin_list_jobs(
    status_filter: Optional[str] = Query(
        default=None, alias="status", pattern="^(queued|running|succeeded|failed)$"
    ),
    job_type: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    query = db.query(models.BackgroundJob)
    if status_filter:
        query = query.filter(models.BackgroundJob.status == status_filter)
    if job_type:
        query = query.filter(models.BackgroundJob.job_type == job_type)
    return query.order_by(models.BackgroundJob.id.desc()).limit(limit).all()


@app.post(
    "/api/admin/notifications/event-reminders",
    response_model=schemas.EnqueuedJobResponse,
    status_code=status.HTTP_201_CREATED,
)
def admin_enqueue_event_reminders(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    job = enqueue_job(db, JOB_TYPE_SCHEDULE_EVENT_REMINDERS, {}, dedupe_key="global")
    return {"job_id": int(job.id), "job_type": job.job_type, "status": job.status}


@app.get("/api/admin/stats", response_model=schemas.AdminStatsResponse)
def admin_stats(
    days: int = 30,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    if days < 1 or days > 365:
        raise HTTPException(status_code=400, detail="`days` must be between 1 and 365.")
    start = datetime.now(timezone.utc) - timedelta(days=days)

    def _count(column, *criteria) -> int:
        return int(db.query(func.count(column)).filter(*criteria).scalar() or 0)

    live_event = models.Event.deleted_at.is_(None)
    active_registration = models.Registration.status == "registered"

    reg_rows = (
        db.query(
            func.date(models.Registration.registered_at).label("day"),
            func.count(models.Registration.id).label("registrations"),
        )
        .filter(active_registration, models.Registration.registered_at >= start)
        .group_by("day")
        .order_by("day")
        .all()
    )

    return {
        "days": days,
        "total_users": _count(models.User.id),
        "new_users": _count(models.User.id, models.User.created_at >= start),
        "banned_users": _count(models.User.id, models.User.is_banned.is_(True)),
        "total_events": _count(models.Event.id, live_event),
        "events_created": _count(models.Event.id, live_event, models.Event.created_at >= start),
        "banned_events": _count(models.Event.id, live_event, models.Event.status == "banned"),
        "total_registrations": _count(models.Registration.id, active_registration),
        "total_forums": _count(models.DiscussionForum.id),
        "total_forum_posts": _count(models.ForumPost.id),
        "forum_posts_created": _count(models.ForumPost.id, models.ForumPost.created_at >= start),
        "registrations_by_day": [
            {"date": str(row.day), "registrations": int(row.registrations or 0)} for row in reg_rows
        ],
    }
