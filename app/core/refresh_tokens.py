import logging
import secrets
from contextlib import contextmanager
from datetime import timedelta
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.errors import PersistenceError
from app.core.security import Clock, utcnow
from app.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 40
REFRESH_TOKEN_LENGTH = REFRESH_TOKEN_BYTES * 2


class RefreshTokenManager:
    """
    Opaque, store-backed refresh tokens.

    A token is valid while its row exists and ``expires_at`` lies in the
    future. Revocation deletes the row, so it takes effect immediately.
    Lookups that fail for any reason (unknown, malformed, expired) return
    None without saying which.
    """

    def __init__(
        self,
        db: Session,
        ttl: timedelta = timedelta(days=7),
        clock: Clock = utcnow,
    ):
        self.db = db
        self.ttl = ttl
        self._clock = clock

    @staticmethod
    def generate() -> str:
        return secrets.token_hex(REFRESH_TOKEN_BYTES)

    def store(self, user_id: int, token: str) -> RefreshToken:
        with self._transaction("store refresh token"):
            record = self._new_record(user_id, token)
        return record

    def verify(self, token: str) -> Optional[RefreshToken]:
        if not isinstance(token, str) or len(token) != REFRESH_TOKEN_LENGTH:
            return None
        try:
            return self.db.query(RefreshToken).filter(
                RefreshToken.token == token,
                RefreshToken.expires_at > self._clock(),
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Refresh token lookup failed: {type(e).__name__}", exc_info=True)
            raise PersistenceError()

    def revoke(self, token: str) -> None:
        if not isinstance(token, str) or not token:
            return
        with self._transaction("revoke refresh token"):
            self.db.query(RefreshToken).filter(RefreshToken.token == token).delete(
                synchronize_session=False
            )

    def revoke_all(self, user_id: int) -> int:
        with self._transaction("revoke user refresh tokens"):
            count = self.db.query(RefreshToken).filter(
                RefreshToken.user_id == user_id
            ).delete(synchronize_session=False)
        logger.info(f"Revoked {count} refresh token(s) for user {user_id}")
        return count

    def sweep_expired(self) -> int:
        with self._transaction("sweep expired refresh tokens"):
            count = self.db.query(RefreshToken).filter(
                RefreshToken.expires_at <= self._clock()
            ).delete(synchronize_session=False)
        return count

    def rotate(self, token: str) -> Optional[str]:
        """
        Swap a valid token for a new one in a single transaction.

        Returns None when the old token is not valid. When two exchanges of
        the same token race, only the one whose delete hits the row wins.
        """
        record = self.verify(token)
        if record is None:
            return None

        with self._transaction("rotate refresh token"):
            deleted = self.db.query(RefreshToken).filter(
                RefreshToken.id == record.id
            ).delete(synchronize_session=False)
            if deleted != 1:
                self.db.rollback()
                return None
            new_token = self.generate()
            self._new_record(record.user_id, new_token)
        return new_token

    def _new_record(self, user_id: int, token: str) -> RefreshToken:
        record = RefreshToken(
            user_id=user_id,
            token=token,
            expires_at=self._clock() + self.ttl,
        )
        self.db.add(record)
        return record

    @contextmanager
    def _transaction(self, action: str):
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to {action}: {type(e).__name__}", exc_info=True)
            raise PersistenceError()
