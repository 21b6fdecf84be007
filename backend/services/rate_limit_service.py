"""
Rate Limit Service - limits on 2FA code guessing.

The HTTP layer already limits requests per IP (slowapi). This service caps
verification attempts per key: the account for callers that proved the
password (temp token) or hold a session, the account and client IP for
anonymous callers. An attacker rotating IPs therefore cannot lock the owner
out, and still only gets TOTP_MAX_FAILED_ATTEMPTS guesses per window from
each address.

Note: storage is in-memory, per process. Deployments running several
workers should move the counters to a shared store.
"""

import threading
import time
from typing import Dict, List

from loguru import logger

from models.config import settings
from models.exceptions import RateLimitExceededException


class RateLimitService:
    """Service for managing 2FA attempt limits."""

    _attempts: Dict[str, List[float]] = {}
    _lock = threading.Lock()

    @staticmethod
    def _recent(key: str, now: float, window: int) -> List[float]:
        window_start = now - window
        return [t for t in RateLimitService._attempts.get(key, []) if t > window_start]

    @staticmethod
    def register_two_factor_attempt(
        key: str,
        limit: int | None = None,
        window: int | None = None,
    ) -> None:
        """
        Count one verification attempt, refusing it when the key is locked out.

        The check and the count happen under one lock, so concurrent requests
        cannot all slip under the limit. Attempts stay counted until
        reset_user_limits is called after a successful verification.

        Args:
            key: Attempt key (account, or account and client IP)
            limit: Maximum attempts allowed in the window
            window: Window length in seconds

        Raises:
            RateLimitExceededException: If the key is locked out
        """
        limit = limit if limit is not None else settings.TOTP_MAX_FAILED_ATTEMPTS
        window = window if window is not None else settings.TOTP_FAILED_ATTEMPT_WINDOW_SECONDS
        now = time.time()

        with RateLimitService._lock:
            recent = RateLimitService._recent(key, now, window)
            allowed = len(recent) < limit
            if allowed:
                recent.append(now)
            RateLimitService._attempts[key] = recent

        if not allowed:
            retry_after = max(1, int(min(recent) + window - now))
            logger.warning(
                f"2FA attempts locked for {key} "
                f"({len(recent)} attempts, retry in {retry_after}s)"
            )
            raise RateLimitExceededException(
                message="Too many failed verification attempts. Please try again later.",
                retry_after=retry_after,
            )

    @staticmethod
    def reset_user_limits(key: str) -> None:
        """
        Clear the attempt history for a key.

        Called after a successful verification.

        Args:
            key: Attempt key whose limits should be reset
        """
        with RateLimitService._lock:
            RateLimitService._attempts.pop(key, None)

    @staticmethod
    def reset_all() -> None:
        """Clear every counter (tests and admin tooling)."""
        with RateLimitService._lock:
            RateLimitService._attempts.clear()

    @staticmethod
    def get_remaining_attempts(
        key: str,
        limit: int | None = None,
        window: int | None = None,
    ) -> int:
        """
        Get the number of attempts a key can still make in the window.

        Args:
            key: Attempt key
            limit: Maximum attempts allowed in the window
            window: Window length in seconds

        Returns:
            Remaining attempts before lockout
        """
        limit = limit if limit is not None else settings.TOTP_MAX_FAILED_ATTEMPTS
        window = window if window is not None else settings.TOTP_FAILED_ATTEMPT_WINDOW_SECONDS
        with RateLimitService._lock:
            recent = RateLimitService._recent(key, time.time(), window)
        return max(0, limit - len(recent))
