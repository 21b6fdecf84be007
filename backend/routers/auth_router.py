"""Authentication router endpoints."""

from typing import Union

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

import authentication.auth as auth
import models.schemas as schemas
import repositories.db_models as db_models
from helpers.rate_limiter import limiter
from repositories.database import get_db
from services.auth_service import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=schemas.User, status_code=201)
@limiter.limit("5/minute")
def register(
    request: Request, user: schemas.UserCreate, db: Session = Depends(get_db)
) -> db_models.User:
    """Register a new user. Rate limited to 5 per minute."""
    return AuthService.register(db, user)


@router.post(
    "/login",
    response_model=Union[schemas.Token, schemas.TwoFactorRequiredResponse],
)
@limiter.limit("10/minute")
def login(
    request: Request,
    response: Response,
    credentials: schemas.LoginRequest,
    db: Session = Depends(get_db),
) -> Union[schemas.Token, schemas.TwoFactorRequiredResponse]:
    """
    Login user. Rate limited to 10 per minute.

    If user has 2FA enabled, returns TwoFactorRequiredResponse with temp_token.
    Call /2fa/verify-token (or /2fa/verify-recovery) with the temp_token to
    complete login.

    Domain exceptions are caught by centralized exception handlers.
    """
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    return AuthService.login(db, credentials.email, credentials.password)


@router.get("/me", response_model=schemas.User)
def read_users_me(
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> db_models.User:
    """Get the current user's profile."""
    return current_user
