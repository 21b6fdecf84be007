"""Repositories for TOTP 2FA state and recovery codes."""

import secrets
import string
from datetime import datetime, timezone
from typing import Optional

import bcrypt
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from models.config import settings
from repositories.base import BaseRepository
from repositories.db_models import RecoveryCode, User


class TOTPRepository(BaseRepository[User]):
    """Repository for the TOTP secret and flags stored on the user row."""

    def __init__(self, db: Session):
        """Initialize the repository."""
        super().__init__(User, db)
        self._fernet: Optional[Fernet] = None

    def _get_fernet(self) -> Fernet:
        """Get Fernet instance for encryption/decryption.

        Raises:
            ValueError: If TOTP_ENCRYPTION_KEY is not configured or invalid.
        """
        if self._fernet is None:
            if not settings.TOTP_ENCRYPTION_KEY:
                raise ValueError("TOTP_ENCRYPTION_KEY is not configured")
            try:
                self._fernet = Fernet(settings.TOTP_ENCRYPTION_KEY.encode())
            except Exception as e:
                raise ValueError(f"Invalid TOTP_ENCRYPTION_KEY: {e}") from e
        return self._fernet

    def encrypt_secret(self, secret: str) -> str:
        """Encrypt TOTP secret for database storage."""
        return self._get_fernet().encrypt(secret.encode()).decode()

    def decrypt_secret(self, encrypted: str) -> str:
        """Decrypt TOTP secret from database.

        Raises:
            ValueError: If decryption fails (invalid token or key mismatch).
        """
        try:
            return self._get_fernet().decrypt(encrypted.encode()).decode()
        except InvalidToken as e:
            raise ValueError(f"Failed to decrypt TOTP secret: {e}") from e

    def get_secret(self, user: User) -> Optional[str]:
        """Return the user's plain base32 secret, or None when not set up."""
        if not user.totp_secret:
            return None
        return self.decrypt_secret(user.totp_secret)

    def store_pending_secret(self, user: User, secret: str) -> None:
        """
        Store a new secret without enabling 2FA.

        Overwrites any previous unconfirmed secret.
        """
        user.totp_secret = self.encrypt_secret(secret)
        user.totp_enabled = False
        user.totp_last_used_step = None
        self.db.flush()

    def mark_enabled(self, user: User) -> None:
        """Flip the account from Pending to Enabled."""
        user.totp_enabled = True
        user.totp_enabled_at = datetime.now(timezone.utc)
        self.db.flush()

    def record_time_step(self, user: User, step: int) -> bool:
        """
        Remember the last accepted time step (replay protection).

        Conditional update: the step is only written when it is newer than
        the stored one, so of two concurrent logins with the same code
        exactly one sees an affected row.

        Returns:
            True if this call advanced the stored step
        """
        affected = (
            self.db.query(User)
            .filter(
                User.id == user.id,
                or_(
                    User.totp_last_used_step.is_(None),
                    User.totp_last_used_step < step,
                ),
            )
            .update({"totp_last_used_step": step}, synchronize_session=False)
        )
        if affected != 1:
            return False
        set_committed_value(user, "totp_last_used_step", step)
        return True

    def clear(self, user: User) -> None:
        """Remove the secret and all 2FA flags (back to Disabled)."""
        user.totp_enabled = False
        user.totp_secret = None
        user.totp_enabled_at = None
        user.totp_last_used_step = None
        self.db.flush()


class RecoveryCodeRepository(BaseRepository[RecoveryCode]):
    """Repository for recovery code management."""

    CODE_COUNT = 10
    CODE_LENGTH = 10
    ALPHABET = string.ascii_uppercase + string.digits

    def __init__(self, db: Session):
        """Initialize the repository."""
        super().__init__(RecoveryCode, db)

    @classmethod
    def generate_code(cls) -> str:
        """Generate a single recovery code (10 uppercase alphanumerics)."""
        return "".join(secrets.choice(cls.ALPHABET) for _ in range(cls.CODE_LENGTH))

    @staticmethod
    def normalize_code(code: str) -> str:
        """Normalize user input: uppercase, no separators or spaces."""
        return code.strip().upper().replace("-", "").replace(" ", "")

    @staticmethod
    def hash_code(code: str) -> str:
        """Hash a recovery code with bcrypt."""
        salt = bcrypt.gensalt(rounds=settings.RECOVERY_CODE_BCRYPT_ROUNDS)
        return bcrypt.hashpw(code.encode(), salt).decode()

    @staticmethod
    def verify_code_hash(code: str, code_hash: str) -> bool:
        """Check a normalized code against a stored bcrypt hash."""
        try:
            return bcrypt.checkpw(code.encode(), code_hash.encode())
        except ValueError:
            # Malformed hash in storage never matches
            return False

    def create_codes(self, user_id: str) -> list[str]:
        """
        Insert a fresh batch of recovery codes for a user.

        Existing codes are deleted first. Changes are flushed, not committed.

        Returns:
            Plain text codes (show to user once)
        """
        self.delete_user_codes(user_id)

        plain_codes: list[str] = []
        while len(plain_codes) < self.CODE_COUNT:
            code = self.generate_code()
            if code in plain_codes:
                continue
            plain_codes.append(code)

        now = datetime.now(timezone.utc)
        self.add_all(
            [
                RecoveryCode(
                    user_id=user_id,
                    code_hash=self.hash_code(code),
                    used=False,
                    created_at=now,
                )
                for code in plain_codes
            ]
        )
        self.db.flush()
        return plain_codes

    def get_unused_codes(self, user_id: str) -> list[RecoveryCode]:
        """Get all unused recovery codes for a user."""
        return (
            self.db.query(RecoveryCode)
            .filter(
                RecoveryCode.user_id == user_id,
                RecoveryCode.used == False,  # noqa: E712
            )
            .order_by(RecoveryCode.id)
            .all()
        )

    def find_matching_code(self, user_id: str, code: str) -> Optional[RecoveryCode]:
        """
        Scan the user's unused codes for one matching the submitted code.

        Only hashes are stored, so this is a linear scan with bcrypt's verify
        routine, bounded by the number of unused codes.
        """
        normalized = self.normalize_code(code)
        if not normalized:
            return None
        for record in self.get_unused_codes(user_id):
            if self.verify_code_hash(normalized, record.code_hash):
                return record
        return None

    def mark_used(self, code_id: int) -> bool:
        """
        Consume a recovery code.

        Conditional update: only a row that is still unused is changed, so of
        two concurrent consumers exactly one sees an affected row.

        Returns:
            True if this call consumed the code
        """
        affected = (
            self.db.query(RecoveryCode)
            .filter(
                RecoveryCode.id == code_id,
                RecoveryCode.used == False,  # noqa: E712
            )
            .update(
                {"used": True, "used_at": datetime.now(timezone.utc)},
                synchronize_session=False,
            )
        )
        return affected == 1

    def get_remaining_count(self, user_id: str) -> int:
        """Get count of unused recovery codes."""
        return (
            self.db.query(RecoveryCode)
            .filter(
                RecoveryCode.user_id == user_id,
                RecoveryCode.used == False,  # noqa: E712
            )
            .count()
        )

    def count_user_codes(self, user_id: str) -> int:
        """Get count of all recovery codes (used or not) for a user."""
        return (
            self.db.query(RecoveryCode).filter(RecoveryCode.user_id == user_id).count()
        )

    def delete_user_codes(self, user_id: str) -> int:
        """Delete all recovery codes for a user."""
        result = (
            self.db.query(RecoveryCode)
            .filter(RecoveryCode.user_id == user_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]
