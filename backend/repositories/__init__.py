"""
Repository pattern implementation for data access layer.
"""

from .base import BaseRepository
from .totp_repository import RecoveryCodeRepository, TOTPRepository
from .user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "RecoveryCodeRepository",
    "TOTPRepository",
    "UserRepository",
]
