from fastapi import APIRouter, Depends, Request, status
from app.core.rate_limit import limiter, get_login_rate_limit, get_signup_rate_limit
from app.dependencies import get_auth_service, get_current_user
from app.models.user import User
from app.schemas.auth import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    RefreshResponse,
    RefreshTokenRequest,
    SignupRequest,
    UserResponse,
)
from app.services import AuthService

router = APIRouter()


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_signup_rate_limit())
def signup(
    request: Request,
    payload: SignupRequest,
    service: AuthService = Depends(get_auth_service),
):
    return service.signup(payload.username, payload.email, payload.password)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(get_login_rate_limit())
def login(
    request: Request,
    payload: LoginRequest,
    service: AuthService = Depends(get_auth_service),
):
    return service.login(payload.email, payload.password)


@router.post("/refresh", response_model=RefreshResponse, response_model_exclude_none=True)
def refresh_token(
    payload: RefreshTokenRequest,
    service: AuthService = Depends(get_auth_service),
):
    return service.refresh(payload.refresh_token)


@router.post("/logout", response_model=MessageResponse)
def logout(
    payload: RefreshTokenRequest,
    service: AuthService = Depends(get_auth_service),
):
    return service.logout(payload.refresh_token)


@router.get("/me", response_model=UserResponse)
def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user
