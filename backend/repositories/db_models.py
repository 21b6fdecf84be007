"""
Database models using SQLAlchemy 2.0 style with Mapped type hints.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repositories.database import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Account record, including its 2FA state.

    2FA lifecycle:
        Disabled: totp_secret is None, totp_enabled is False
        Pending:  totp_secret set, totp_enabled is False
        Enabled:  totp_secret set, totp_enabled is True
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    # 2FA
    totp_secret: Mapped[Optional[str]] = mapped_column(
        String(256), nullable=True
    )  # Fernet-encrypted base32 secret
    totp_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    totp_enabled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    totp_last_used_step: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    recovery_codes: Mapped[List["RecoveryCode"]] = relationship(
        "RecoveryCode", back_populates="user", cascade="all, delete-orphan"
    )


class RecoveryCode(Base):
    """Single-use 2FA recovery code (bcrypt hash only)."""

    __tablename__ = "recovery_codes"
    __table_args__ = (Index("idx_recovery_codes_user_used", "user_id", "used"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    code_hash: Mapped[str] = mapped_column(String(60), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    user: Mapped["User"] = relationship("User", back_populates="recovery_codes")
