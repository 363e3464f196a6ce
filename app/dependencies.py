from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from app.core.auth_config import AuthOptions
from app.core.database import get_db
from app.core.errors import AuthenticationRequired
from app.models.user import User
from app.services import AuthService

bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(request: Request, db: Session = Depends(get_db)) -> AuthService:
    state = request.app.state
    options: AuthOptions = state.auth_options
    return AuthService(
        db=db,
        hasher=state.password_hasher,
        issuer=state.token_issuer,
        refresh_ttl=options.refresh_token_ttl,
        rotate_refresh_tokens=options.rotate_refresh_tokens,
        clock=state.clock,
    )


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Extract the access token from the Authorization header."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationRequired()
    return credentials.credentials


def get_current_user(
    token: str = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> User:
    """FastAPI dependency to get current authenticated user."""
    return service.resolve_access_token(token)
