"""Service for 2FA TOTP operations.

Lifecycle per account (see db_models.User):

    Disabled --setup--> Pending --confirm--> Enabled --disable--> Disabled
                        Pending --setup--> Pending (secret replaced)

Enrollment, disable and recovery-code regeneration each run in a single
transaction: either every change lands or none does.

Verification attempts are capped per account for callers holding a session
or a temp token, and per account and client IP for anonymous callers.
A temp token yields at most one session.
"""

import secrets
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models.schemas as schemas
import repositories.db_models as db_models
from authentication.auth import create_access_token
from helpers import totp
from models.config import settings
from models.exceptions import (
    TwoFactorAlreadyEnabledException,
    TwoFactorConfigurationException,
    TwoFactorInvalidCodeException,
    TwoFactorInvalidRecoveryCodeException,
    TwoFactorNotEnabledException,
    TwoFactorSetupIncompleteException,
    TwoFactorStorageException,
    TwoFactorTempTokenExpiredException,
    UserNotFoundException,
)
from repositories.totp_repository import RecoveryCodeRepository, TOTPRepository
from repositories.user_repository import UserRepository
from services.rate_limit_service import RateLimitService

TEMP_TOKEN_PURPOSE = "2fa_verification"


@contextmanager
def _atomic(db: Session, action: str) -> Iterator[None]:
    """Commit the block as one transaction, rolling back on any error.

    Store failures surface as TwoFactorStorageException; anything else is
    re-raised unchanged after the rollback.
    """
    try:
        yield
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"2FA {action} failed and was rolled back: {e!r}")
        raise TwoFactorStorageException() from e
    except Exception:
        db.rollback()
        raise


class TwoFactorService:
    """Service for TOTP 2FA operations."""

    # jti -> expiry of temp tokens that already issued a session (per process)
    _used_temp_tokens: Dict[str, float] = {}
    _temp_token_lock = threading.Lock()

    @staticmethod
    def _wrap_config_error(func, *args, **kwargs):
        """Wrap repository calls to convert ValueError to domain exception.

        Repository methods raise ValueError for configuration issues
        (missing or wrong TOTP_ENCRYPTION_KEY).
        """
        try:
            return func(*args, **kwargs)
        except ValueError as e:
            raise TwoFactorConfigurationException(str(e)) from e

    @staticmethod
    def _get_user(db: Session, user_id: str) -> db_models.User:
        user = UserRepository(db).get_by_id(user_id)
        if not user:
            raise UserNotFoundException()
        return user

    @staticmethod
    def _attempt_key(
        user_id: str, temp_claims: Dict[str, Any] | None, client_ip: str | None
    ) -> str:
        """Attempt-limit key for a login-time verification.

        Callers that passed the password step share the account counter;
        anonymous callers only exhaust the counter for their own address.
        """
        if temp_claims is not None:
            return user_id
        return f"{user_id}@{client_ip or 'unknown'}"

    @staticmethod
    def _check_totp(
        db: Session,
        user: db_models.User,
        code: str,
        attempt_key: str | None = None,
    ) -> None:
        """
        Validate a TOTP code for the user, enforcing the attempt limit.

        On success with replay protection enabled, the accepted time step is
        recorded on the user (committed by the caller).

        Args:
            attempt_key: Attempt-limit key, the account ID when omitted

        Raises:
            RateLimitExceededException: If the key is locked out
            TwoFactorInvalidCodeException: If the code does not match
        """
        user_id = str(user.id)
        attempt_key = attempt_key or user_id

        totp_repo = TOTPRepository(db)
        secret = TwoFactorService._wrap_config_error(totp_repo.get_secret, user)
        if secret is None:
            raise TwoFactorSetupIncompleteException()

        RateLimitService.register_two_factor_attempt(attempt_key)

        step = totp.match_time_step(
            secret, code, tolerance_steps=settings.TOTP_VALID_WINDOW
        )
        replayed = (
            step is not None
            and settings.TOTP_REJECT_REPLAYED_CODES
            and user.totp_last_used_step is not None
            and step <= user.totp_last_used_step
        )
        if step is None or replayed:
            logger.warning(
                f"Invalid 2FA code for user {user_id}"
                + (" (replayed time step)" if replayed else "")
            )
            raise TwoFactorInvalidCodeException()

        if settings.TOTP_REJECT_REPLAYED_CODES and not totp_repo.record_time_step(
            user, step
        ):
            logger.warning(f"2FA time step for user {user_id} was used concurrently")
            raise TwoFactorInvalidCodeException()

        RateLimitService.reset_user_limits(attempt_key)

    @staticmethod
    def begin_setup(db: Session, user_id: str) -> schemas.TwoFactorSetupResponse:
        """
        Start (or restart) 2FA enrollment.

        Stores a new secret with 2FA still disabled, replacing any secret
        from an earlier, unconfirmed setup.

        Args:
            db: Database session
            user_id: User ID

        Returns:
            Setup response with the base32 secret and QR code

        Raises:
            UserNotFoundException: If user not found
            TwoFactorAlreadyEnabledException: If 2FA already enabled
            TwoFactorStorageException: If the secret could not be saved
        """
        user = TwoFactorService._get_user(db, user_id)
        if user.totp_enabled:
            raise TwoFactorAlreadyEnabledException()

        generated = totp.generate_secret(str(user.email), settings.TOTP_ISSUER_NAME)

        totp_repo = TOTPRepository(db)
        with _atomic(db, "setup"):
            TwoFactorService._wrap_config_error(
                totp_repo.store_pending_secret, user, generated.base32
            )

        logger.info(f"2FA setup started for user {user_id}")

        return schemas.TwoFactorSetupResponse(
            secret=generated.base32,
            qr_code=totp.render_enrollment_image(generated.provisioning_uri),
            provisioning_uri=generated.provisioning_uri,
        )

    @staticmethod
    def confirm_setup(
        db: Session, user_id: str, code: str
    ) -> schemas.TwoFactorEnabledResponse:
        """
        Complete enrollment by verifying the first code.

        Creates the recovery codes and enables 2FA in one transaction.
        Confirming an already enabled account is refused; recovery codes are
        handed out once.

        Args:
            db: Database session
            user_id: User ID
            code: 6-digit TOTP code from authenticator app

        Returns:
            Response with the plain recovery codes (only time they are shown)

        Raises:
            UserNotFoundException: If user not found
            TwoFactorSetupIncompleteException: If no secret is stored
            TwoFactorAlreadyEnabledException: If 2FA is already enabled
            TwoFactorInvalidCodeException: If verification code is invalid
            TwoFactorStorageException: If the store failed (nothing persisted)
        """
        user = TwoFactorService._get_user(db, user_id)
        if not user.totp_secret:
            raise TwoFactorSetupIncompleteException()
        if user.totp_enabled:
            raise TwoFactorAlreadyEnabledException()

        totp_repo = TOTPRepository(db)
        recovery_repo = RecoveryCodeRepository(db)

        with _atomic(db, "enable"):
            TwoFactorService._check_totp(db, user, code)
            recovery_codes = recovery_repo.create_codes(str(user.id))
            totp_repo.mark_enabled(user)

        logger.info(f"2FA enabled for user {user_id}")

        return schemas.TwoFactorEnabledResponse(
            message="2FA enabled successfully",
            recovery_codes=recovery_codes,
        )

    @staticmethod
    def create_temp_token(user_id: str) -> str:
        """
        Create temporary token for the 2FA verification step.

        The token only authorizes the /2fa/verify-* endpoints.

        Args:
            user_id: User ID

        Returns:
            JWT temp token string
        """
        expires = datetime.now(timezone.utc) + timedelta(
            minutes=settings.TOTP_TEMP_TOKEN_EXPIRE_MINUTES
        )
        payload = {
            "sub": str(user_id),
            "purpose": TEMP_TOKEN_PURPOSE,
            "jti": secrets.token_urlsafe(16),
            "exp": expires,
        }
        return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def _decode_temp_token(token: str) -> Dict[str, Any] | None:
        try:
            payload = jwt.decode(
                token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
            )
        except jwt.exceptions.InvalidTokenError:
            return None
        if payload.get("purpose") != TEMP_TOKEN_PURPOSE:
            return None
        if not payload.get("sub") or not payload.get("jti"):
            return None
        return payload

    @staticmethod
    def verify_temp_token(token: str) -> str | None:
        """
        Verify temporary 2FA token.

        Args:
            token: JWT temp token

        Returns:
            User ID if valid and not yet used, None otherwise
        """
        payload = TwoFactorService._decode_temp_token(token)
        if payload is None:
            return None
        with TwoFactorService._temp_token_lock:
            if payload["jti"] in TwoFactorService._used_temp_tokens:
                return None
        return str(payload["sub"])

    @staticmethod
    def _check_temp_token(
        temp_token: str | None, user_id: str
    ) -> Dict[str, Any] | None:
        """Validate an optional temp token against user_id, returning its claims."""
        if temp_token is None:
            return None
        if TwoFactorService.verify_temp_token(temp_token) != user_id:
            raise TwoFactorTempTokenExpiredException()
        return TwoFactorService._decode_temp_token(temp_token)

    @staticmethod
    def _consume_temp_token(temp_claims: Dict[str, Any] | None) -> None:
        """
        Mark a temp token as spent.

        Raises:
            TwoFactorTempTokenExpiredException: If the token already issued
                a session
        """
        if temp_claims is None:
            return
        now = time.time()
        with TwoFactorService._temp_token_lock:
            used = TwoFactorService._used_temp_tokens
            for jti in [j for j, exp in used.items() if exp < now]:
                del used[jti]
            reused = temp_claims["jti"] in used
            if not reused:
                used[temp_claims["jti"]] = float(temp_claims["exp"])
        if reused:
            logger.warning(f"Temp token reused for user {temp_claims['sub']}")
            raise TwoFactorTempTokenExpiredException()

    @staticmethod
    def _verified_response(
        user: db_models.User, temp_claims: Dict[str, Any] | None
    ) -> schemas.TwoFactorVerifiedResponse:
        """Build the success response, issuing a session when logging in."""
        if temp_claims is None:
            return schemas.TwoFactorVerifiedResponse(verified=True)
        access_token = create_access_token(
            data={"sub": str(user.id)},
            expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        )
        return schemas.TwoFactorVerifiedResponse(
            verified=True, access_token=access_token, token_type="bearer"  # nosec B106
        )

    @staticmethod
    def verify_login_code(
        db: Session,
        user_id: str,
        code: str,
        temp_token: str | None = None,
        client_ip: str | None = None,
    ) -> schemas.TwoFactorVerifiedResponse:
        """
        Verify a TOTP code at login time.

        Does not change any state unless replay protection is enabled.

        Args:
            db: Database session
            user_id: User ID
            code: 6-digit TOTP code
            temp_token: Optional temp token from the password step; when
                given, it must belong to user_id and a session is issued
            client_ip: Caller address, scopes the attempt limit of calls
                made without a temp token

        Returns:
            Verified response (with access token when temp_token was given)

        Raises:
            TwoFactorTempTokenExpiredException: If temp token invalid/expired/used
            UserNotFoundException: If user not found
            TwoFactorNotEnabledException: If 2FA is not enabled
            TwoFactorInvalidCodeException: If code is invalid
            RateLimitExceededException: If attempts are locked out
        """
        temp_claims = TwoFactorService._check_temp_token(temp_token, user_id)

        user = TwoFactorService._get_user(db, user_id)
        if not user.totp_enabled or not user.totp_secret:
            raise TwoFactorNotEnabledException()

        attempt_key = TwoFactorService._attempt_key(user_id, temp_claims, client_ip)
        scope = (
            _atomic(db, "login verification")
            if settings.TOTP_REJECT_REPLAYED_CODES
            else nullcontext()
        )
        with scope:
            TwoFactorService._check_totp(db, user, code, attempt_key)
            TwoFactorService._consume_temp_token(temp_claims)

        logger.info(f"2FA login code verified for user {user_id}")
        return TwoFactorService._verified_response(user, temp_claims)

    @staticmethod
    def verify_recovery_code(
        db: Session,
        user_id: str,
        code: str,
        temp_token: str | None = None,
        client_ip: str | None = None,
    ) -> schemas.TwoFactorVerifiedResponse:
        """
        Verify and consume a recovery code.

        Each code works exactly once. Two concurrent submissions of the same
        code race on a conditional update; only one of them wins.

        Args:
            db: Database session
            user_id: User ID
            code: Recovery code as typed by the user
            temp_token: Optional temp token from the password step
            client_ip: Caller address, scopes the attempt limit of calls
                made without a temp token

        Returns:
            Verified response (with access token when temp_token was given)

        Raises:
            TwoFactorTempTokenExpiredException: If temp token invalid/expired/used
            UserNotFoundException: If user not found
            TwoFactorInvalidRecoveryCodeException: If no unused code matches
            RateLimitExceededException: If attempts are locked out
        """
        temp_claims = TwoFactorService._check_temp_token(temp_token, user_id)

        user = TwoFactorService._get_user(db, user_id)
        attempt_key = TwoFactorService._attempt_key(user_id, temp_claims, client_ip)
        RateLimitService.register_two_factor_attempt(attempt_key)

        recovery_repo = RecoveryCodeRepository(db)
        record = recovery_repo.find_matching_code(user_id, code)
        if record is None:
            logger.warning(f"Invalid recovery code for user {user_id}")
            raise TwoFactorInvalidRecoveryCodeException()

        # A reused temp token rolls the consumption back
        with _atomic(db, "recovery code consumption"):
            consumed = recovery_repo.mark_used(record.id)
            if consumed:
                TwoFactorService._consume_temp_token(temp_claims)

        if not consumed:
            logger.warning(
                f"Recovery code {record.id} for user {user_id} was consumed concurrently"
            )
            raise TwoFactorInvalidRecoveryCodeException()

        RateLimitService.reset_user_limits(attempt_key)
        remaining = recovery_repo.get_remaining_count(user_id)
        logger.info(f"Recovery code used for user {user_id}, {remaining} remaining")
        if remaining == 0:
            logger.warning(f"User {user_id} has no recovery codes left")

        return TwoFactorService._verified_response(user, temp_claims)

    @staticmethod
    def disable(db: Session, user_id: str, code: str) -> schemas.MessageResponse:
        """
        Disable 2FA for a user.

        Requires a current TOTP code (recovery codes are not accepted).
        Clears the secret and deletes every recovery code in one transaction.

        Args:
            db: Database session
            user_id: User ID
            code: 6-digit TOTP code

        Returns:
            Success message

        Raises:
            UserNotFoundException: If user not found
            TwoFactorNotEnabledException: If 2FA is not enabled
            TwoFactorInvalidCodeException: If code is invalid
            TwoFactorStorageException: If the store failed (nothing changed)
        """
        user = TwoFactorService._get_user(db, user_id)
        if not user.totp_enabled or not user.totp_secret:
            raise TwoFactorNotEnabledException()

        totp_repo = TOTPRepository(db)
        recovery_repo = RecoveryCodeRepository(db)

        with _atomic(db, "disable"):
            TwoFactorService._check_totp(db, user, code)
            totp_repo.clear(user)
            recovery_repo.delete_user_codes(user_id)

        logger.info(f"2FA disabled for user {user_id}")
        return schemas.MessageResponse(message="2FA disabled successfully")

    @staticmethod
    def get_status(db: Session, user_id: str) -> schemas.TwoFactorStatusResponse:
        """
        Get 2FA status for user.

        Args:
            db: Database session
            user_id: User ID

        Returns:
            2FA status response

        Raises:
            UserNotFoundException: If user not found
        """
        user = TwoFactorService._get_user(db, user_id)

        remaining = 0
        if user.totp_enabled:
            remaining = RecoveryCodeRepository(db).get_remaining_count(user_id)

        return schemas.TwoFactorStatusResponse(
            enabled=bool(user.totp_enabled),
            pending=bool(user.totp_secret) and not user.totp_enabled,
            recovery_codes_remaining=remaining,
        )

    @staticmethod
    def regenerate_recovery_codes(
        db: Session, user_id: str, code: str
    ) -> schemas.RecoveryCodesResponse:
        """
        Replace all recovery codes with a fresh set.

        Used once codes run low; there is no automatic replenishment.
        Requires a current TOTP code.

        Raises:
            UserNotFoundException: If user not found
            TwoFactorNotEnabledException: If 2FA is not enabled
            TwoFactorInvalidCodeException: If code is invalid
            TwoFactorStorageException: If the store failed (old codes kept)
        """
        user = TwoFactorService._get_user(db, user_id)
        if not user.totp_enabled or not user.totp_secret:
            raise TwoFactorNotEnabledException()

        recovery_repo = RecoveryCodeRepository(db)
        with _atomic(db, "recovery code regeneration"):
            TwoFactorService._check_totp(db, user, code)
            recovery_codes = recovery_repo.create_codes(user_id)

        logger.info(f"Recovery codes regenerated for user {user_id}")
        return schemas.RecoveryCodesResponse(recovery_codes=recovery_codes)
