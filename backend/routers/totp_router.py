"""Router for 2FA TOTP endpoints."""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

import authentication.auth as auth
import models.schemas as schemas
import repositories.db_models as db_models
from helpers.rate_limiter import limiter
from helpers.request_utils import get_client_ip_or_unknown
from models.config import settings
from repositories.database import get_db
from services.two_factor_service import TwoFactorService

router = APIRouter(prefix="/2fa", tags=["2FA"])


def _no_store(response: Response) -> None:
    # Responses carrying secrets, recovery codes or tokens must not be cached
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"


@router.post("/setup", response_model=schemas.TwoFactorSetupResponse)
@limiter.limit(settings.TWO_FACTOR_RATE_LIMIT)
async def setup_2fa(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> schemas.TwoFactorSetupResponse:
    """
    Start 2FA setup.

    Returns the secret, its otpauth:// URI and a QR code. 2FA stays off until
    /2fa/verify-and-enable succeeds. Calling again replaces the pending secret.
    """
    _no_store(response)
    return TwoFactorService.begin_setup(db, str(current_user.id))


@router.post("/verify-and-enable", response_model=schemas.TwoFactorEnabledResponse)
@limiter.limit(settings.TWO_FACTOR_RATE_LIMIT)
async def verify_and_enable(
    request: Request,
    response: Response,
    request_body: schemas.TwoFactorCodeRequest,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> schemas.TwoFactorEnabledResponse:
    """
    Complete 2FA setup by verifying the first code.

    Returns recovery codes (show to user once, they cannot be retrieved again).
    """
    _no_store(response)
    return TwoFactorService.confirm_setup(db, str(current_user.id), request_body.token)


@router.post(
    "/verify-token",
    response_model=schemas.TwoFactorVerifiedResponse,
    response_model_exclude_none=True,
)
@limiter.limit(settings.TWO_FACTOR_RATE_LIMIT)
async def verify_token(
    request: Request,
    response: Response,
    request_body: schemas.TwoFactorTokenVerifyRequest,
    db: Session = Depends(get_db),
) -> schemas.TwoFactorVerifiedResponse:
    """
    Verify a TOTP code during login.

    Called after /auth/login answered with requires_2fa. With tempToken the
    response carries the session access token.
    """
    _no_store(response)
    return TwoFactorService.verify_login_code(
        db,
        request_body.user_id,
        request_body.token,
        temp_token=request_body.temp_token,
        client_ip=get_client_ip_or_unknown(request),
    )


@router.post(
    "/verify-recovery",
    response_model=schemas.TwoFactorVerifiedResponse,
    response_model_exclude_none=True,
)
@limiter.limit(settings.TWO_FACTOR_RATE_LIMIT)
async def verify_recovery(
    request: Request,
    response: Response,
    request_body: schemas.TwoFactorRecoveryVerifyRequest,
    db: Session = Depends(get_db),
) -> schemas.TwoFactorVerifiedResponse:
    """Verify and consume a recovery code during login."""
    _no_store(response)
    return TwoFactorService.verify_recovery_code(
        db,
        request_body.user_id,
        request_body.code,
        temp_token=request_body.temp_token,
        client_ip=get_client_ip_or_unknown(request),
    )


@router.post("/disable", response_model=schemas.MessageResponse)
@limiter.limit(settings.TWO_FACTOR_RATE_LIMIT)
async def disable_2fa(
    request: Request,
    request_body: schemas.TwoFactorCodeRequest,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> schemas.MessageResponse:
    """
    Disable 2FA for account.

    Requires a current TOTP code. Deletes the secret and all recovery codes.
    """
    return TwoFactorService.disable(db, str(current_user.id), request_body.token)


@router.get("/status", response_model=schemas.TwoFactorStatusResponse)
async def get_2fa_status(
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> schemas.TwoFactorStatusResponse:
    """Get current 2FA status for user."""
    return TwoFactorService.get_status(db, str(current_user.id))


@router.post("/recovery-codes/regenerate", response_model=schemas.RecoveryCodesResponse)
@limiter.limit(settings.TWO_FACTOR_RATE_LIMIT)
async def regenerate_recovery_codes(
    request: Request,
    response: Response,
    request_body: schemas.TwoFactorCodeRequest,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> schemas.RecoveryCodesResponse:
    """
    Replace all recovery codes.

    Requires a current TOTP code. Old codes stop working immediately.
    """
    _no_store(response)
    return TwoFactorService.regenerate_recovery_codes(
        db, str(current_user.id), request_body.token
    )
