from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

import models.schemas as schemas
import repositories.db_models as db_models
from models.config import settings
from models.exceptions import AuthenticationException, InactiveUserException
from repositories.database import get_db

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(
        to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM
    )
    return encoded_jwt


def authenticate_user(db: Session, email: str, password: str) -> db_models.User | None:
    user = (
        db.query(db_models.User)
        .filter(db_models.User.email == email.lower())
        .first()
    )
    if not user:
        return None
    if not verify_password(password, str(user.hashed_password)):
        return None
    return user


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)
) -> db_models.User:
    """
    Get the current authenticated user from the bearer JWT.

    Temp tokens minted for the 2FA step are rejected here: they only
    authorize the verify endpoints, never a full session.

    Raises:
        AuthenticationException: If credentials are missing, invalid, or the
            user no longer exists.
    """
    if not token:
        raise AuthenticationException("Not authorized")
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
    except jwt.exceptions.InvalidTokenError:
        raise AuthenticationException("Could not validate credentials")

    if payload.get("purpose"):
        raise AuthenticationException("Could not validate credentials")

    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationException("Could not validate credentials")
    token_data = schemas.TokenData(user_id=str(user_id))

    user = (
        db.query(db_models.User)
        .filter(db_models.User.id == token_data.user_id)
        .first()
    )
    if user is None:
        raise AuthenticationException("Could not validate credentials")
    return user


async def get_current_active_user(
    current_user: db_models.User = Depends(get_current_user),
) -> db_models.User:
    """
    Get the current user and make sure the account is active.

    Raises:
        InactiveUserException: If the user account has been deactivated.
    """
    if not bool(current_user.is_active):
        raise InactiveUserException("Account has been deactivated")
    return current_user
