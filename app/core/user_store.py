import logging
from typing import Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.errors import DuplicateCredential, PersistenceError
from app.models.user import User

logger = logging.getLogger(__name__)


class UserStore:
    """
    Credential store backed by the ``users`` table.

    Uniqueness of username and email is enforced by the table's unique
    constraints, so two concurrent signups for the same name cannot both
    commit.
    """

    def __init__(self, db: Session):
        self.db = db

    def create_user(self, username: str, email: str, password_hash: str) -> User:
        user = User(username=username, email=email, password=password_hash)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateCredential("username or email already taken")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create user: {type(e).__name__}", exc_info=True)
            raise PersistenceError()
        self.db.refresh(user)
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        return self._first(User.email == email)

    def find_by_id(self, user_id: int) -> Optional[User]:
        return self._first(User.id == user_id)

    def _first(self, criterion) -> Optional[User]:
        try:
            return self.db.query(User).filter(criterion).first()
        except SQLAlchemyError as e:
            logger.error(f"User lookup failed: {type(e).__name__}", exc_info=True)
            raise PersistenceError()
