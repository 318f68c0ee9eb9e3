import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from backoffice.core.errors import ConflictError, NotFoundError
from backoffice.models.database import Role, User
from backoffice.models.schemas import UserCreate

logger = logging.getLogger(__name__)


class UserService:
    """Read side of staff accounts plus the account creation used by admins"""

    def __init__(self, db: Session):
        self.db = db

    def create_user(self, user_data: UserCreate) -> User:
        existing = self.db.query(User).filter(User.email == user_data.email).first()
        if existing:
            raise ConflictError("Email already taken")

        user = User(
            name=user_data.name,
            email=user_data.email,
            password=generate_password_hash(user_data.password),
            role=user_data.role,
            email_verified=user_data.email_verified,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Email already taken")
        self.db.refresh(user)
        logger.info(f"Created user {user.id} with role {user.role}")
        return user

    def get_user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if not user:
            raise NotFoundError(f"User with ID {user_id} not found")
        return user

    def list_users(self, role: Optional[str] = None) -> List[User]:
        query = self.db.query(User)
        if role:
            query = query.filter(User.role == role)
        return query.order_by(User.name).all()

    def get_waiter(self, waiter_id: int) -> User:
        """Return the user if it is a waiter; anything else is an invalid reference."""
        waiter = self.db.query(User).filter(
            User.id == waiter_id, User.role == Role.WAITER
        ).first()
        if not waiter:
            raise ConflictError("Invalid Waiter ID provided.")
        return waiter

    def admin_emails(self, verified_only: bool = False) -> List[str]:
        query = self.db.query(User.email).filter(User.role.in_(Role.ADMINS))
        if verified_only:
            query = query.filter(User.email_verified.is_(True))
        return [email for (email,) in query.all()]
