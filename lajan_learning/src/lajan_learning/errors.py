"""
Error taxonomy for the session core.

Transient remote failures are recorded on the session and retried later,
authentication failures carry a user-facing message, and invalid input is
rejected before anything leaves the device.
"""

from typing import Dict, Optional


class LajanError(Exception):
    """Base class for all session core errors."""


class AuthError(LajanError):
    """Identity provider rejected the request."""

    def __init__(self, code: Optional[str], message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class RemoteServiceError(LajanError):
    """A remote record service failed. Retryable."""


class RemoteTimeoutError(RemoteServiceError):
    """A remote call exceeded the configured timeout. Retryable."""


class InvalidInputError(LajanError, ValueError):
    """Input violates a local invariant; no remote call was attempted."""


class NotAuthenticatedError(LajanError):
    """Operation requires an authenticated user."""

    def __init__(self, message: str = "No authenticated user found"):
        super().__init__(message)


class NotFoundError(LajanError):
    """A looked-up record does not exist."""


# Provider error codes -> messages shown to the user
AUTH_MESSAGES: Dict[str, str] = {
    "invalid_credentials": "Invalid email or password",
    "invalid_grant": "Invalid email or password",
    "wrong_password": "Incorrect password",
    "user_banned": "This account has been disabled",
    "user_disabled": "This account has been disabled",
    "user_not_found": "No account found with this email",
    "email_not_confirmed": "Please verify your email before signing in",
    "over_request_rate_limit": "Too many failed login attempts. Please try again later or reset your password",
    "too_many_requests": "Too many failed login attempts. Please try again later or reset your password",
    "user_already_exists": "This email is already in use",
    "email_exists": "This email is already in use",
    "email_address_invalid": "Invalid email format",
    "invalid_email": "Invalid email format",
    "weak_password": "Password is too weak",
    "signup_disabled": "Email/password accounts are not enabled",
}

DEFAULT_AUTH_MESSAGES: Dict[str, str] = {
    "sign_in": "Invalid email or password",
    "sign_up": "Registration failed",
    "reset_password": "Failed to send password reset email",
    "resend_verification": "Failed to resend verification email",
    "sign_out": "Failed to log out",
}


def auth_message(code: Optional[str], operation: str = "sign_in") -> str:
    """
    Map a provider error code to a user-facing message.

    Args:
        code: Provider error code (may be None)
        operation: Operation that failed, selects the fallback message

    Returns:
        Message suitable for display
    """
    if code and code in AUTH_MESSAGES:
        # Password reset reports a missing user differently
        if operation == "reset_password" and code == "user_not_found":
            return "No user found with this email"
        if operation == "reset_password" and code in ("invalid_email", "email_address_invalid"):
            return "Invalid email address"
        return AUTH_MESSAGES[code]
    return DEFAULT_AUTH_MESSAGES.get(operation, "Authentication failed")
