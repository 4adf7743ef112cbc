from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


EventStatus = Literal["draft", "published", "completed", "cancelled", "banned"]
HostEventStatus = Literal["draft", "published", "completed", "cancelled"]
Visibility = Literal["public", "private"]
LocationType = Literal["physical", "virtual", "hybrid"]
ForumType = Literal["general", "q_and_a", "networking", "feedback", "technical"]


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    institution: Optional[str] = Field(default=None, max_length=255)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        if not any(ch.isalpha() for ch in v) or not any(ch.isdigit() for ch in v):
            raise ValueError("Password must include letters and numbers")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    id: int
    uuid: str
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    institution: Optional[str] = None
    account_status: str
    is_admin: bool
    is_banned: bool
    ban_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    token_type: str
    user_id: int
    is_admin: bool


class EventCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    timezone: str = "UTC"
    location_type: LocationType = "physical"
    location: Optional[str] = Field(default=None, max_length=255)
    virtual_link: Optional[str] = Field(default=None, max_length=500)
    capacity: Optional[int] = None
    poster: Optional[str] = Field(default=None, max_length=500)
    visibility: Visibility = "public"


class EventUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=3, max_length=255)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    timezone: Optional[str] = None
    location_type: Optional[LocationType] = None
    location: Optional[str] = Field(default=None, max_length=255)
    virtual_link: Optional[str] = Field(default=None, max_length=500)
    capacity: Optional[int] = None
    poster: Optional[str] = Field(default=None, max_length=500)
    visibility: Optional[Visibility] = None
    status: Optional[HostEventStatus] = None


class EventResponse(BaseModel):
    id: int
    uuid: str
    host_id: int
    title: str
    description: Optional[str] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    timezone: str
    location_type: str
    location: Optional[str] = None
    virtual_link: Optional[str] = None
    capacity: Optional[int] = None
    poster: Optional[str] = None
    status: EventStatus
    visibility: Visibility
    ban_reason: Optional[str] = None
    banned_at: Optional[datetime] = None
    banned_by: Optional[int] = None
    moderated_at: Optional[datetime] = None
    moderated_by: Optional[int] = None
    registered_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class RegistrationRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


class RegistrationResponse(BaseModel):
    id: int
    uuid: str
    event_id: int
    user_id: int
    status: str
    registered_at: datetime
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BanRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class ForceDeleteRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class ForceDeleteResponse(BaseModel):
    message: str
    registrations_deleted: int
    forums_deleted: int
    posts_deleted: int


class UserBanResponse(BaseModel):
    id: int
    is_banned: bool
    ban_reason: Optional[str] = None
    banned_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AdminLogResponse(BaseModel):
    id: int
    uuid: str
    admin_id: int
    action: str
    target_type: str
    target_id: int
    reason: Optional[str] = None
    description: Optional[str] = None
    changes: Optional[dict[str, Any]] = None
    meta: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    severity: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaginatedAdminLogs(BaseModel):
    items: List[AdminLogResponse]
    total: int
    page: int
    page_size: int


class ConnectionCreate(BaseModel):
    addressee_id: int
    message: Optional[str] = Field(default=None, max_length=500)


class ConnectionRespond(BaseModel):
    action: Literal["accept", "decline"]


class ConnectionResponse(BaseModel):
    id: int
    requester_id: int
    addressee_id: int
    status: str
    message: Optional[str] = None
    responded_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BackgroundJobResponse(BaseModel):
    id: int
    job_type: str
    status: str
    attempts: int
    max_attempts: int
    run_at: datetime
    last_error: Optional[str] = None
    payload: dict[str, Any]
    created_at: datetime
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EnqueuedJobResponse(BaseModel):
    job_id: int
    job_type: str
    status: str


class PaginatedEvents(BaseModel):
    items: List[EventResponse]
    total: int
    page: int
    page_size: int


class ForumCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    forum_type: ForumType = "general"
    is_moderated: bool = False


class ForumResponse(BaseModel):
    id: int
    event_id: int
    title: str
    description: Optional[str] = None
    forum_type: ForumType
    is_active: bool
    is_moderated: bool
    created_by: int
    created_at: datetime
    post_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class ForumPostCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class ForumPostResponse(BaseModel):
    id: int
    forum_id: int
    user_id: int
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaginatedForumPosts(BaseModel):
    items: List[ForumPostResponse]
    total: int
    page: int
    page_size: int


class RegistrationDayStat(BaseModel):
    date: str
    registrations: int


class AdminStatsResponse(BaseModel):
    days: int
    total_users: int
    new_users: int
    banned_users: int
    total_events: int
    events_created: int
    banned_events: int
    total_registrations: int
    total_forums: int
    total_forum_posts: int
    forum_posts_created: int
    registrations_by_day: List[RegistrationDayStat]
