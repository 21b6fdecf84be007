"""
User repository for database operations.
"""

from typing import Optional

from sqlalchemy.orm import Session

import repositories.db_models as db_models
from .base import BaseRepository


class UserRepository(BaseRepository[db_models.User]):
    """Repository for User entity database operations."""

    def __init__(self, db: Session):
        """
        Initialize user repository.

        Args:
            db: Database session
        """
        super().__init__(db_models.User, db)

    def get_by_email(self, email: str) -> Optional[db_models.User]:
        """
        Get user by email.

        Args:
            email: User email (compared lower-cased)

        Returns:
            User if found, None otherwise
        """
        return (
            self.db.query(db_models.User)
            .filter(db_models.User.email == email.lower())
            .first()
        )

    def email_exists(self, email: str) -> bool:
        """Check whether an account already uses this email."""
        return self.get_by_email(email) is not None
