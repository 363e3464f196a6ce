import logging
from datetime import timedelta
from sqlalchemy.orm import Session
from app.core.errors import (
    CredentialConflict,
    DuplicateCredential,
    InvalidCredentials,
    InvalidToken,
    SessionExpired,
)
from app.core.metrics import LOGIN_ATTEMPTS, TOKEN_REFRESHES, USER_SIGNUPS, LOGOUTS
from app.core.refresh_tokens import RefreshTokenManager
from app.core.security import AccessTokenIssuer, Clock, PasswordHasher, utcnow
from app.core.user_store import UserStore
from app.models.user import User
from app.schemas.auth import AuthResponse, MessageResponse, RefreshResponse, UserResponse

logger = logging.getLogger(__name__)


class AuthService:
    """
    Signup, login, refresh and logout on top of the credential store, the
    password hasher and both token kinds.

    A caller is anonymous until signup or login hands it an access/refresh
    pair. An expired access token is traded for a new one with the refresh
    token; logout deletes the refresh token, while an access token already
    handed out stays valid until it expires on its own.
    """

    def __init__(
        self,
        db: Session,
        hasher: PasswordHasher,
        issuer: AccessTokenIssuer,
        refresh_ttl: timedelta = timedelta(days=7),
        rotate_refresh_tokens: bool = False,
        clock: Clock = utcnow,
    ):
        self.users = UserStore(db)
        self.refresh_tokens = RefreshTokenManager(db, ttl=refresh_ttl, clock=clock)
        self.hasher = hasher
        self.issuer = issuer
        self.rotate_refresh_tokens = rotate_refresh_tokens

    def signup(self, username: str, email: str, password: str) -> AuthResponse:
        password_hash = self.hasher.hash(password)
        try:
            user = self.users.create_user(username, email, password_hash)
        except DuplicateCredential:
            USER_SIGNUPS.labels(result="duplicate").inc()
            raise CredentialConflict()

        USER_SIGNUPS.labels(result="success").inc()
        logger.info(f"User {user.id} signed up")
        return self._open_session(user, "User created successfully")

    def login(self, email: str, password: str) -> AuthResponse:
        user = self.users.find_by_email(email)

        # same answer for unknown email and wrong password
        if not user or not self.hasher.verify(password, user.password):
            LOGIN_ATTEMPTS.labels(result="failure", failure_reason="invalid_credentials").inc()
            raise InvalidCredentials()

        LOGIN_ATTEMPTS.labels(result="success", failure_reason="none").inc()
        logger.info(f"User {user.id} logged in")
        return self._open_session(user, "Login successful")

    def refresh(self, refresh_token: str) -> RefreshResponse:
        record = self.refresh_tokens.verify(refresh_token)
        if record is None:
            TOKEN_REFRESHES.labels(result="invalid").inc()
            raise SessionExpired()

        user = self.users.find_by_id(record.user_id)
        if user is None:
            TOKEN_REFRESHES.labels(result="user_missing").inc()
            raise SessionExpired("User not found")

        new_refresh_token = None
        if self.rotate_refresh_tokens:
            new_refresh_token = self.refresh_tokens.rotate(refresh_token)
            if new_refresh_token is None:
                # lost a race against logout or a concurrent rotation
                TOKEN_REFRESHES.labels(result="invalid").inc()
                raise SessionExpired()

        TOKEN_REFRESHES.labels(result="success").inc()
        return RefreshResponse(
            access_token=self.issuer.issue(user.id, user.username, user.email),
            refresh_token=new_refresh_token,
        )

    def logout(self, refresh_token: str) -> MessageResponse:
        LOGOUTS.inc()
        self.refresh_tokens.revoke(refresh_token)
        return MessageResponse(message="Logout successful")

    def logout_everywhere(self, user_id: int) -> int:
        return self.refresh_tokens.revoke_all(user_id)

    def resolve_access_token(self, access_token: str) -> User:
        claims = self.issuer.verify(access_token)
        if claims is None:
            raise InvalidToken()

        # the user may have been deleted after the token was issued
        user = self.users.find_by_id(claims.subject_id)
        if user is None:
            raise InvalidToken("User not found")
        return user

    def _open_session(self, user: User, message: str) -> AuthResponse:
        access_token = self.issuer.issue(user.id, user.username, user.email)
        refresh_token = self.refresh_tokens.generate()
        self.refresh_tokens.store(user.id, refresh_token)
        return AuthResponse(
            message=message,
            access_token=access_token,
            refresh_token=refresh_token,
            user=UserResponse.model_validate(user),
        )
