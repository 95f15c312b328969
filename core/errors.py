"""
Domain exceptions for the FixIt Hostel backend.

Each error carries the HTTP status it is rendered with by the exception
handlers registered in app.py. Services raise these; routers never translate
them by hand.
"""
from typing import Optional


class AppError(Exception):
    """Base class for errors that surface to API clients."""
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed or missing input."""
    status_code = 400
    default_message = "Invalid request"


class InvalidEmailError(ValidationError):
    default_message = "Invalid email format"


class WeakPasswordError(ValidationError):
    default_message = "Password must be at least 6 characters long"


class OtpError(ValidationError):
    """Base for OTP verification failures."""
    default_message = "Invalid OTP"


class OtpNotFoundError(OtpError):
    default_message = "OTP not found or expired. Please request a new one."


class OtpExpiredError(OtpError):
    default_message = "OTP has expired. Please request a new one."


class OtpMismatchError(OtpError):
    default_message = "Invalid OTP. Please check and try again."


class AuthError(AppError):
    """Bad credentials, or a missing/invalid/expired session token."""
    status_code = 401
    default_message = "Invalid email or password"


class AuthorizationError(AppError):
    """Authenticated but not allowed to perform the action."""
    status_code = 403
    default_message = "Access denied"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    """Uniqueness violation, e.g. an email that is already registered."""
    status_code = 409
    default_message = "Already exists"


class DependencyError(AppError):
    """
    A collaborator (mirror store, mailer, object store) failed.

    Only surfaced to clients when it happens on a primary path; secondary
    failures are logged and swallowed.
    """
    status_code = 503
    default_message = "A required service is unavailable"
