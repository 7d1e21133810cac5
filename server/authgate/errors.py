from __future__ import annotations


class ConfigError(RuntimeError):
    """Startup configuration is missing or malformed. Fatal."""


class AuthError(Exception):
    """Base for errors that map onto an HTTP status.

    Subclasses set ``status_code`` and a default message; 5xx messages are never
    shown to the client.
    """

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    status_code = 400
    default_message = "Invalid request."


class MissingEmail(AuthError):
    status_code = 400
    default_message = "OAuth provider did not supply an email address"


class DuplicateEmail(AuthError):
    status_code = 409
    default_message = "Email already registered"


class InvalidCredentials(AuthError):
    status_code = 401
    # one message for unknown email and wrong password alike
    default_message = "Invalid email or password"


class InvalidCode(AuthError):
    status_code = 401
    default_message = "Invalid code."


class NotAuthenticated(AuthError):
    status_code = 401
    default_message = "Not authenticated"


class NotFound(AuthError):
    status_code = 404
    default_message = "User not found"


class DecryptionError(AuthError):
    status_code = 500
    default_message = "Failed to decrypt value"


class OAuthError(AuthError):
    status_code = 502
    default_message = "OAuth provider request failed"
