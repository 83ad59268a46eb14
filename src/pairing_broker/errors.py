"""Error taxonomy shared by the flow controllers, gateways and the HTTP layer.

Every error carries the HTTP status the routing layer should answer with.
Controllers raise; ``main`` turns any :class:`BrokerError` into a JSON body
of the form ``{"success": false, "error": "..."}``.
"""

from __future__ import annotations


class BrokerError(Exception):
    """Base class for all expected, user-visible failures."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ── Categories ───────────────────────────────────────────

class ValidationError(BrokerError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(BrokerError):
    status_code = 404
    default_message = "Not found"


class StateConflictError(BrokerError):
    status_code = 400
    default_message = "Request conflicts with current state"


class UpstreamError(BrokerError):
    status_code = 500
    default_message = "Upstream service error"


class AuthError(BrokerError):
    status_code = 401
    default_message = "Authentication failed"


# ── OTP flow ─────────────────────────────────────────────

class AlreadyRegisteredError(ValidationError):
    default_message = "Email is already registered"


class OtpNotFoundError(NotFoundError):
    # A missing or expired OTP is an invalid submission from the caller's side.
    status_code = 400
    default_message = "OTP not found or expired"


class OtpMismatchError(StateConflictError):
    default_message = "Invalid OTP"


class OtpNotVerifiedError(StateConflictError):
    default_message = "Email has not been verified"


class MailDeliveryError(UpstreamError):
    default_message = "Failed to send OTP email"


# ── Connection codes ─────────────────────────────────────

class InvalidOwnerError(ValidationError):
    default_message = "Invalid owner"


class CodeNotFoundError(NotFoundError):
    status_code = 400
    default_message = "Invalid or expired connection code"


class NoCodeIssuedError(NotFoundError):
    default_message = "No connection code found"


class UserNotFoundError(NotFoundError):
    default_message = "User not found"


class SelfConnectionError(StateConflictError):
    default_message = "Cannot connect to yourself"


class CodeExpiredError(StateConflictError):
    default_message = "Connection code has expired"


class UsageExceededError(StateConflictError):
    default_message = "Connection code usage limit reached"


# ── Login ────────────────────────────────────────────────

class InvalidCredentialsError(AuthError):
    default_message = "Invalid email or password"
