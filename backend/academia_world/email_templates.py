from datetime import datetime
from html import escape
from typing import Any, Callable, Optional

from .config import settings


ADMIN_SUBJECTS = {
    "new_event": "New Event Published",
    "new_registration": "New Event Registration",
    "event_cancelled": "Event Cancelled",
}


def format_dt(dt: Optional[datetime]) -> str:
    if not dt:
        return ""
    return dt.strftime("%Y-%m-%d %H:%M")


def _where(data: dict[str, Any]) -> str:
    if data.get("location_type") == "virtual":
        return data.get("virtual_link") or "Online"
    return data.get("location") or "-"


def render_email_verification(data: dict[str, Any]) -> tuple[str, str, str]:
    name = data.get("name") or ""
    link = data["verification_url"]
    hours = data.get("expires_in_hours") or settings.email_verification_expire_hours
    subject = f"Verify Your Email Address - {settings.app_name}"
    body = (
        f"Hello {name},\n\n"
        f"Welcome to {settings.app_name}! Please confirm your email address using this link "
        f"(valid for {hours} hours):\n{link}\n\n"
        "If you did not create an account, you can ignore this email."
    )
    html = (
        f"<p>Hello {escape(name)},</p>"
        f"<p>Welcome to {escape(settings.app_name)}! Please confirm your email address.</p>"
        f"<p><a href=\"{escape(link)}\">Verify email</a> (valid for {hours} hours)</p>"
        "<p>If you did not create an account, you can ignore this email.</p>"
    )
    return subject, body, html


def render_registration_confirmation(data: dict[str, Any]) -> tuple[str, str, str]:
    title = data["event_title"]
    name = data.get("name") or ""
    where = _where(data)
    subject = f"Registration Confirmed: {title}"
    body = (
        f"Hello {name},\n\n"
        f"You are registered for '{title}'.\n"
        f"Starts at: {data.get('start') or '-'}\n"
        f"Where: {where}\n\n"
        "See you there!"
    )
    html = (
        f"<p>Hello {escape(name)},</p>"
        f"<p>You are registered for <strong>{escape(title)}</strong>.</p>"
        f"<p><strong>Starts:</strong> {escape(data.get('start') or '-')}<br>"
        f"<strong>Where:</strong> {escape(where)}</p>"
        "<p>See you there!</p>"
    )
    return subject, body, html


def render_event_reminder(data: dict[str, Any]) -> tuple[str, str, str]:
    title = data["event_title"]
    name = data.get("name") or ""
    reminder_type = data.get("reminder_type") or "24h"
    prefix = "Tomorrow" if reminder_type == "24h" else "Starting Soon"
    when = "tomorrow" if reminder_type == "24h" else "in about an hour"
    where = _where(data)
    subject = f"{prefix}: {title}"
    body = (
        f"Hello {name},\n\n"
        f"'{title}' starts {when} ({data.get('start') or '-'}).\n"
        f"Where: {where}\n"
    )
    html = (
        f"<p>Hello {escape(name)},</p>"
        f"<p><strong>{escape(title)}</strong> starts {when} ({escape(data.get('start') or '-')}).</p>"
        f"<p><strong>Where:</strong> {escape(where)}</p>"
    )
    if data.get("poster_url"):
        body += f"Poster: {data['poster_url']}\n"
        html += f"<p><img src=\"{escape(data['poster_url'])}\" alt=\"{escape(title)}\"></p>"
    if data.get("host_name"):
        body += f"Organized by: {data['host_name']}\n"
        html += f"<p>Organized by {escape(data['host_name'])}</p>"
    return subject, body, html


def render_admin_event_notification(data: dict[str, Any]) -> tuple[str, str, str]:
    notification_type = data.get("notification_type") or ""
    title = data["event_title"]
    subject = "[Admin] " + ADMIN_SUBJECTS.get(notification_type, "Event Notification")
    lines = [f"Event: {title} (#{data.get('event_id')})", f"Host: {data.get('host_name') or '-'}"]
    if data.get("start"):
        lines.append(f"Starts at: {data['start']}")
    if notification_type == "new_registration" and data.get("user_name"):
        lines.append(f"Registered user: {data['user_name']} <{data.get('user_email') or ''}>")
    body = f"Hello {data.get('admin_name') or 'admin'},\n\n" + "\n".join(lines)
    html = f"<p>Hello {escape(data.get('admin_name') or 'admin')},</p>" + "".join(
        f"<p>{escape(line)}</p>" for line in lines
    )
    return subject, body, html


TEMPLATES: dict[str, Callable[[dict[str, Any]], tuple[str, str, str]]] = {
    "email_verification": render_email_verification,
    "event_registration_confirmation": render_registration_confirmation,
    "event_reminder": render_event_reminder,
    "admin_event_notification": render_admin_event_notification,
}


def render_email(template_name: str, data: dict[str, Any]) -> tuple[str, str, str]:
    renderer = TEMPLATES.get(template_name)
    if renderer is None:
        raise ValueError(f"Unknown email template: {template_name}")
    return renderer(data)
