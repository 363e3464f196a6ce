from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from jose import JWTError, jwt
import bcrypt
import logging

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PasswordHasher:
    """Salted bcrypt hashing; every call to ``hash`` embeds a fresh salt."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        encoded = plaintext.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            raise ValueError(f"password cannot be longer than {BCRYPT_MAX_BYTES} bytes")
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(encoded, salt).decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        """Verify plain password against bcrypt hash."""
        encoded = plaintext.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, digest.encode("utf-8"))
        except ValueError:
            # malformed digest in storage
            logger.warning("Stored password digest is not a valid bcrypt hash")
            return False


@dataclass(frozen=True)
class AccessClaims:
    subject_id: int
    username: str
    email: str
    issued_at: datetime
    expires_at: datetime


class AccessTokenIssuer:
    """
    Issues and verifies short-lived HS256 access tokens.

    The signing key is handed in once at startup and never changes for the
    lifetime of the instance. ``verify`` only depends on the token, the key
    and the clock; confirming that the subject still exists is left to the
    caller.
    """

    token_type = "access"

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(minutes=15),
        clock: Clock = utcnow,
    ):
        if not secret_key:
            raise ValueError("secret_key is required")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.ttl = ttl
        self._clock = clock

    def issue(self, subject_id: int, username: str, email: str) -> str:
        issued_at = self._clock()
        claims = {
            "sub": str(subject_id),
            "username": username,
            "email": email,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self.ttl).timestamp()),
            "type": self.token_type,
        }
        return jwt.encode(claims, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> Optional[AccessClaims]:
        if not token or not isinstance(token, str):
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            return None

        if payload.get("type") != self.token_type:
            return None

        try:
            subject_id = int(payload["sub"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
            username = payload["username"]
            email = payload["email"]
        except (KeyError, TypeError, ValueError):
            return None

        if expires_at <= self._clock():
            return None

        return AccessClaims(
            subject_id=subject_id,
            username=username,
            email=email,
            issued_at=issued_at,
            expires_at=expires_at,
        )
