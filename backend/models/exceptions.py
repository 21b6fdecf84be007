"""
Domain exceptions.

Services raise these; the centralized handlers in main.py turn them into
JSON error responses. Keeping the service layer HTTP-agnostic lets the same
code run from scripts and tests without a request.

Each exception carries a correlation id so a failure seen by a user can be
matched with the server logs and Sentry.
"""

from core.correlation import generate_correlation_id, get_correlation_id


class DomainException(Exception):
    """
    Base class for all domain exceptions.

    Attributes:
        message: Human-readable error message.
        correlation_id: Unique ID for error tracking (auto-generated if not provided).
    """

    def __init__(self, message: str, correlation_id: str | None = None):
        self.message = message
        self.correlation_id = (
            correlation_id or get_correlation_id() or generate_correlation_id()
        )
        super().__init__(self.message)


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    pass


class PermissionDeniedException(DomainException):
    """Raised when user lacks required permissions."""

    pass


class ValidationException(DomainException):
    """Raised when input validation fails."""

    pass


class AuthenticationException(DomainException):
    """Raised when authentication fails."""

    pass


class AlreadyExistsException(DomainException):
    """Raised when trying to create a resource that already exists."""

    pass


# Specific exceptions for accounts


class UserNotFoundException(NotFoundException):
    """User not found."""

    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class UserAlreadyExistsException(AlreadyExistsException):
    """User already exists."""

    def __init__(self, message: str = "Email already registered"):
        super().__init__(message)


class InvalidCredentialsException(AuthenticationException):
    """Invalid email or password."""

    pass


class InactiveUserException(PermissionDeniedException):
    """User account is inactive."""

    pass


# ============================================================================
# Rate Limiting Exceptions
# ============================================================================


class RateLimitExceededException(DomainException):
    """Raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: int | None = None,
    ):
        super().__init__(message)
        self.retry_after = retry_after


# ============================================================================
# 2FA Exceptions
# ============================================================================


class TwoFactorException(DomainException):
    """Base exception for 2FA-related errors."""

    pass


class TwoFactorNotEnabledException(TwoFactorException):
    """Raised when a 2FA operation requires 2FA but it's not enabled."""

    def __init__(self, message: str = "2FA not enabled"):
        super().__init__(message)


class TwoFactorAlreadyEnabledException(TwoFactorException):
    """Raised when setup or confirmation is attempted on an enabled account."""

    def __init__(self, message: str = "2FA is already enabled"):
        super().__init__(message)


class TwoFactorSetupIncompleteException(TwoFactorException):
    """Raised when confirming setup without a stored secret."""

    def __init__(self, message: str = "2FA not set up"):
        super().__init__(message)


class TwoFactorInvalidCodeException(TwoFactorException):
    """Raised when a TOTP code does not match."""

    def __init__(self, message: str = "Invalid 2FA code"):
        super().__init__(message)


class TwoFactorInvalidRecoveryCodeException(TwoFactorException):
    """Raised when no unused recovery code matches the submitted one."""

    def __init__(self, message: str = "Invalid recovery code"):
        super().__init__(message)


class TwoFactorTempTokenExpiredException(TwoFactorException):
    """Raised when the post-password temp token is invalid or expired."""

    def __init__(
        self, message: str = "Verification session expired. Please login again."
    ):
        super().__init__(message)


class TwoFactorConfigurationException(TwoFactorException):
    """Raised when 2FA is not properly configured on the server."""

    def __init__(
        self,
        message: str = "Two-factor authentication is not configured. Contact administrator.",
    ):
        super().__init__(message)


class TwoFactorStorageException(TwoFactorException):
    """Raised when the credential store fails mid-operation.

    The enclosing transaction has been rolled back when this is raised, so
    the account is left in the state it had before the request.
    """

    def __init__(
        self,
        message: str = "Could not save two-factor settings. Please try again.",
    ):
        super().__init__(message)
