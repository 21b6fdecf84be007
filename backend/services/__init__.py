"""
Services layer for business logic.

Services own transaction boundaries and raise domain exceptions; routers
stay thin.
"""

from .auth_service import AuthService
from .rate_limit_service import RateLimitService
from .two_factor_service import TwoFactorService

__all__ = [
    "AuthService",
    "RateLimitService",
    "TwoFactorService",
]
