"""Typed errors raised by the domain services.

Each error carries the HTTP status the API layer answers with, a stable
machine-readable ``code`` and a human-readable message. The API maps them
1:1 through a single exception handler.
"""

from __future__ import annotations


class DomainError(Exception):
    status_code = 400
    code = "domain_error"
    default_message = "Request could not be completed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class ForbiddenError(DomainError):
    status_code = 403
    code = "forbidden"
    default_message = "You are not allowed to perform this action."


class SelfRegistrationError(DomainError):
    code = "self_registration"
    default_message = "You cannot register for your own event"


class EventFullError(DomainError):
    code = "event_full"
    default_message = "Event is full"


class DuplicateRegistrationError(DomainError):
    code = "already_registered"
    default_message = "You are already registered for this event"


class EventNotActiveError(DomainError):
    code = "event_not_active"
    default_message = "Event is not available for registration"


class NotRegisteredError(DomainError):
    code = "not_registered"
    default_message = "You are not registered for this event"


class AlreadyBannedError(DomainError):
    code = "already_banned"
    default_message = "Event is already banned."


class NotBannedError(DomainError):
    code = "not_banned"
    default_message = "Event is not currently banned"


class EventBannedError(DomainError):
    status_code = 403
    code = "event_banned"
    default_message = "This event has been banned and can no longer be changed by its host."


class InvalidStatusTransitionError(DomainError):
    code = "invalid_status_transition"
    default_message = "Invalid event status transition."


class InvalidEventError(DomainError):
    code = "invalid_event"
    default_message = "Event data is invalid."


class EmailTakenError(DomainError):
    code = "email_taken"
    default_message = "This email address is already in use."


class SelfConnectionError(DomainError):
    status_code = 422
    code = "self_connection"
    default_message = "You cannot connect to yourself"


class DuplicateConnectionError(DomainError):
    status_code = 422
    code = "duplicate_connection"
    default_message = "Connection already exists"


class ConnectionAlreadyRespondedError(DomainError):
    status_code = 422
    code = "connection_already_responded"
    default_message = "This request has already been responded to"


class InvalidVerificationTokenError(DomainError):
    code = "invalid_verification_token"
    default_message = "Verification link is invalid or has expired."


class PersistenceError(DomainError):
    status_code = 500
    code = "persistence_error"
    default_message = "The action could not be recorded. Nothing was changed."


class MailTransportError(Exception):
    """SMTP delivery failed; the job queue retries the owning job."""


class JobTimeoutError(Exception):
    """A job exceeded its hard execution timeout."""
