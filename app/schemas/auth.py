import re
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")
PASSWORD_STRENGTH_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
PASSWORD_MAX_BYTES = 72


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _normalize_email(value: str) -> str:
    return value.strip().lower()


class SignupRequest(CamelModel):
    username: str
    email: EmailStr
    password: str

    @field_validator("username")
    @classmethod
    def check_username(cls, value: str) -> str:
        value = value.strip()
        if not 3 <= len(value) <= 20:
            raise ValueError("Username must be between 3 and 20 characters")
        if not USERNAME_PATTERN.match(value):
            raise ValueError("Username can only contain letters, numbers, and underscores")
        return value

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return _normalize_email(value) if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters long")
        if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
            raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long")
        if not PASSWORD_STRENGTH_PATTERN.match(value):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, and one number"
            )
        return value


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return _normalize_email(value) if isinstance(value, str) else value


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


class UserResponse(CamelModel):
    id: int
    username: str
    email: str
    model_config = ConfigDict(from_attributes=True)


class AuthResponse(CamelModel):
    message: str
    access_token: str
    refresh_token: str
    user: UserResponse


class RefreshResponse(CamelModel):
    access_token: str
    refresh_token: Optional[str] = None


class MessageResponse(CamelModel):
    message: str
