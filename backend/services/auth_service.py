"""
Authentication Service

Handles account registration and the password step of login.
"""

from datetime import timedelta

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models.schemas as schemas
import repositories.db_models as db_models
from authentication.auth import (
    authenticate_user,
    create_access_token,
    get_password_hash,
)
from models.config import settings
from models.exceptions import (
    InactiveUserException,
    InvalidCredentialsException,
    UserAlreadyExistsException,
)
from repositories.user_repository import UserRepository
from services.two_factor_service import TwoFactorService


class AuthService:
    """Service for authentication business logic."""

    @staticmethod
    def register(db: Session, user_data: schemas.UserCreate) -> db_models.User:
        """
        Create a new account.

        Args:
            db: Database session
            user_data: Registration payload

        Returns:
            Created user

        Raises:
            UserAlreadyExistsException: If the email is already registered
        """
        user_repo = UserRepository(db)
        email = user_data.email.lower()
        if user_repo.email_exists(email):
            raise UserAlreadyExistsException()

        user = db_models.User(
            email=email,
            display_name=user_data.display_name,
            hashed_password=get_password_hash(user_data.password),
        )
        try:
            user = user_repo.create(user)
        except IntegrityError as e:
            db.rollback()
            raise UserAlreadyExistsException() from e

        logger.info(f"User registered: {user.id}")
        return user

    @staticmethod
    def login(
        db: Session, email: str, password: str
    ) -> schemas.Token | schemas.TwoFactorRequiredResponse:
        """
        Authenticate a user by password.

        Accounts with 2FA enabled do not get a session here; they get a
        short-lived temp token for the /2fa/verify-* step instead.

        Args:
            db: Database session
            email: User email
            password: User password

        Returns:
            Token for accounts without 2FA, TwoFactorRequiredResponse otherwise

        Raises:
            InvalidCredentialsException: If email or password is incorrect
            InactiveUserException: If the account is deactivated
        """
        user = authenticate_user(db, email, password)
        if not user:
            logger.warning("Failed login attempt")
            raise InvalidCredentialsException("Incorrect email or password")
        if not user.is_active:
            raise InactiveUserException()

        if user.totp_enabled:
            logger.info(f"Password accepted for user {user.id}, 2FA required")
            return schemas.TwoFactorRequiredResponse(
                temp_token=TwoFactorService.create_temp_token(str(user.id)),
                user_id=str(user.id),
            )

        access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        access_token = create_access_token(
            data={"sub": str(user.id)}, expires_delta=access_token_expires
        )
        # nosec B106: "bearer" is OAuth2 token type, not a password
        return schemas.Token(access_token=access_token, token_type="bearer")  # nosec B106
