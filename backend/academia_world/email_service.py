import smtplib
from email.message import EmailMessage
from typing import Any, Dict, Optional

from .config import settings
from .email_templates import render_email
from .exceptions import MailTransportError
from .logging_utils import log_event, log_warning


def send_email_now(
    to_email: str,
    subject: str,
    body_text: str,
    body_html: Optional[str] = None,
    context: Dict[str, Any] | None = None,
) -> bool:
    """Deliver one message over SMTP.

    Returns False when sending is disabled or SMTP is not configured. Raises
    MailTransportError when the SMTP exchange fails; retrying is left to the
    job queue that owns the send.
    """
    context = context or {}
    if not settings.email_enabled:
        log_warning("email_disabled", to=to_email, subject=subject, **context)
        return False
    if not settings.smtp_host or not settings.smtp_sender:
        log_warning("email_smtp_not_configured", to=to_email, subject=subject, **context)
        return False

    message = EmailMessage()
    message["From"] = settings.smtp_sender
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(body_text)
    if body_html:
        message.add_alternative(body_html, subtype="html")

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port or 25, timeout=10) as server:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password or "")
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        log_warning(
            "email_send_failed",
            to=to_email,
            subject=subject,
            error=str(exc),
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            **context,
        )
        raise MailTransportError(str(exc)) from exc

    log_event("email_sent", to=to_email, subject=subject, **context)
    return True


def send_templated_email(
    to_email: str,
    template_name: str,
    template_data: Dict[str, Any],
    context: Dict[str, Any] | None = None,
) -> bool:
    subject, body_text, body_html = render_email(template_name, template_data)
    return send_email_now(
        to_email,
        subject,
        body_text,
        body_html,
        context={"template": template_name, **(context or {})},
    )
