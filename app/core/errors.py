"""Error taxonomy for the auth subsystem.

Every error carries the HTTP status the API layer renders it with, so
services can raise them without knowing about FastAPI.
"""

from fastapi import status


class AuthError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Validation failed"


class CredentialConflict(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Username or email already exists"


class InvalidCredentials(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid email or password"


class SessionExpired(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid or expired refresh token"


class AuthenticationRequired(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Access token required"


class InvalidToken(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Invalid or expired token"


class PersistenceError(AuthError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal server error"


class DuplicateCredential(Exception):
    """Raised by the credential store when a unique constraint fires."""
