from app.schemas.auth import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    RefreshResponse,
    RefreshTokenRequest,
    SignupRequest,
    UserResponse,
)

__all__ = [
    "AuthResponse",
    "LoginRequest",
    "MessageResponse",
    "RefreshResponse",
    "RefreshTokenRequest",
    "SignupRequest",
    "UserResponse",
]
