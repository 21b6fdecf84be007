# ruff: noqa: E402
# E402 disabled: load_dotenv() must run before other imports for Sentry DSN

import os
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

import sentry_sdk
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from core.correlation import (
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from core.logging_config import configure_logging
from core.sentry_config import init_sentry
from helpers.rate_limiter import limiter
from helpers.security_headers import SecurityHeadersMiddleware
from models.config import settings
from models.exceptions import (
    AlreadyExistsException,
    AuthenticationException,
    DomainException,
    NotFoundException,
    PermissionDeniedException,
    RateLimitExceededException,
    ValidationException,
)
from repositories.database import Base, engine
from routers import auth_router, totp_router

# Initialize Sentry BEFORE app creation
init_sentry()

# Configure logging with Loguru
configure_logging(os.getenv("ENVIRONMENT", "development"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Optionally create tables when `AUTO_CREATE_DB` is enabled (development).
    Otherwise the schema is managed by Alembic (`alembic upgrade head`).
    """
    if settings.AUTO_CREATE_DB:
        logger.info(
            "AUTO_CREATE_DB enabled; creating database tables via SQLAlchemy create_all()"
        )
        Base.metadata.create_all(bind=engine)
    else:
        logger.info("AUTO_CREATE_DB disabled; skipping automatic create_all()")

    yield

    logger.info("Application shutdown")


app = FastAPI(title="MindWell API", lifespan=lifespan)

# Attach rate limiter to app
app.state.limiter = limiter


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Inject correlation ID into request context and Sentry."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Process request with correlation ID tracking."""
        # Check for incoming correlation ID (from frontend)
        correlation_id = (
            request.headers.get("X-Correlation-ID") or generate_correlation_id()
        )
        set_correlation_id(correlation_id)

        sentry_sdk.set_tag("correlation_id", correlation_id)

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all incoming requests with performance monitoring."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Process request and log timing information."""
        start_time = time.perf_counter()

        client_host = request.client.host if request.client else "unknown"
        logger.info(f"Request: {request.method} {request.url.path} from {client_host}")

        response = await call_next(request)

        duration = time.perf_counter() - start_time
        logger.info(
            f"Response: {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s"
        )

        if duration > settings.SLOW_REQUEST_THRESHOLD:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {duration:.2f}s (threshold: {settings.SLOW_REQUEST_THRESHOLD}s)"
            )

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response


# Middleware runs in reverse order - security headers wrap everything
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# In development, allow all origins for local frontend testing
cors_origins = ["*"] if settings.ENVIRONMENT == "development" else settings.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True if settings.ENVIRONMENT != "development" else False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(
    exc: DomainException,
    status_code: int,
    error_type: str,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the JSON error body shared by every domain exception handler."""
    return JSONResponse(
        status_code=status_code,
        content={
            "message": exc.message,
            "type": error_type,
            "correlation_id": exc.correlation_id,
        },
        headers=headers,
    )


# Global unhandled exception handler (returns generic 500 and logs details)
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch all unhandled exceptions with full Sentry capture."""
    correlation_id = get_correlation_id() or generate_correlation_id()

    sentry_sdk.set_tag("correlation_id", correlation_id)
    sentry_sdk.capture_exception(exc)

    # Use repr() to escape curly braces in exception message
    # (loguru's .format() interprets them as placeholders otherwise)
    logger.exception(
        f"Unhandled exception: {exc!r}",
        correlation_id=correlation_id,
        path=str(request.url.path),
        method=request.method,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "message": "Internal server error",
            "type": "internal_error",
            "correlation_id": correlation_id,
        },
    )


# Centralized exception handlers
@app.exception_handler(NotFoundException)
async def not_found_exception_handler(
    request: Request, exc: NotFoundException
) -> JSONResponse:
    """Handle not found exceptions with Sentry integration."""
    sentry_sdk.set_tag("correlation_id", exc.correlation_id)
    sentry_sdk.set_tag("exception_type", exc.__class__.__name__)

    logger.warning(
        f"Not found: {exc.message}",
        correlation_id=exc.correlation_id,
        exception_type=exc.__class__.__name__,
        path=str(request.url.path),
    )
    return _error_response(exc, status.HTTP_404_NOT_FOUND, "not_found")


@app.exception_handler(AlreadyExistsException)
async def already_exists_exception_handler(
    request: Request, exc: AlreadyExistsException
) -> JSONResponse:
    """Handle already exists exceptions with Sentry integration."""
    sentry_sdk.set_tag("correlation_id", exc.correlation_id)
    sentry_sdk.set_tag("exception_type", exc.__class__.__name__)

    logger.warning(
        f"Already exists: {exc.message}",
        correlation_id=exc.correlation_id,
        exception_type=exc.__class__.__name__,
        path=str(request.url.path),
    )
    return _error_response(exc, status.HTTP_400_BAD_REQUEST, "already_exists")


@app.exception_handler(ValidationException)
async def validation_exception_handler(
    request: Request, exc: ValidationException
) -> JSONResponse:
    """Handle validation exceptions with Sentry integration."""
    sentry_sdk.set_tag("correlation_id", exc.correlation_id)
    sentry_sdk.set_tag("exception_type", exc.__class__.__name__)

    logger.warning(
        f"Validation error: {exc.message}",
        correlation_id=exc.correlation_id,
        exception_type=exc.__class__.__name__,
        path=str(request.url.path),
    )
    return _error_response(exc, status.HTTP_400_BAD_REQUEST, "validation_error")


@app.exception_handler(PermissionDeniedException)
async def permission_denied_exception_handler(
    request: Request, exc: PermissionDeniedException
) -> JSONResponse:
    """Handle permission denied exceptions with Sentry integration."""
    sentry_sdk.set_tag("correlation_id", exc.correlation_id)
    sentry_sdk.set_tag("exception_type", exc.__class__.__name__)

    logger.warning(
        f"Permission denied: {exc.message}",
        correlation_id=exc.correlation_id,
        exception_type=exc.__class__.__name__,
        path=str(request.url.path),
    )
    return _error_response(exc, status.HTTP_403_FORBIDDEN, "permission_denied")


@app.exception_handler(AuthenticationException)
async def authentication_exception_handler(
    request: Request, exc: AuthenticationException
) -> JSONResponse:
    """Handle authentication exceptions with Sentry integration."""
    sentry_sdk.set_tag("correlation_id", exc.correlation_id)
    sentry_sdk.set_tag("exception_type", exc.__class__.__name__)

    logger.warning(
        f"Authentication failed: {exc.message}",
        correlation_id=exc.correlation_id,
        exception_type=exc.__class__.__name__,
        path=str(request.url.path),
    )
    return _error_response(
        exc,
        status.HTTP_401_UNAUTHORIZED,
        "not_authorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(RateLimitExceededException)
async def rate_limit_exceeded_exception_handler(
    request: Request, exc: RateLimitExceededException
) -> JSONResponse:
    """Handle per-account attempt lockouts."""
    sentry_sdk.set_tag("correlation_id", exc.correlation_id)
    logger.warning(f"Rate limit exceeded: {exc.message}", path=str(request.url.path))

    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
    return _error_response(
        exc, status.HTTP_429_TOO_MANY_REQUESTS, "rate_limited", headers=headers
    )


@app.exception_handler(RateLimitExceeded)
async def ip_rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Handle slowapi per-IP limits with the same body as domain errors."""
    correlation_id = get_correlation_id() or generate_correlation_id()
    retry_after = exc.limit.limit.get_expiry()
    logger.warning(
        f"IP rate limit exceeded ({exc.detail})", path=str(request.url.path)
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "message": "Rate limit exceeded. Please try again later.",
            "type": "rate_limited",
            "correlation_id": correlation_id,
        },
        headers={"Retry-After": str(retry_after)},
    )


def _register_2fa_handlers(app_instance: FastAPI) -> None:
    """Register 2FA exception handlers with late import."""
    from models.exceptions import (
        TwoFactorAlreadyEnabledException,
        TwoFactorConfigurationException,
        TwoFactorException,
        TwoFactorInvalidCodeException,
        TwoFactorInvalidRecoveryCodeException,
        TwoFactorNotEnabledException,
        TwoFactorSetupIncompleteException,
        TwoFactorStorageException,
        TwoFactorTempTokenExpiredException,
    )

    # exception class -> (status code, error type)
    mapping: dict[type[TwoFactorException], tuple[int, str]] = {
        TwoFactorException: (status.HTTP_400_BAD_REQUEST, "2fa_error"),
        TwoFactorNotEnabledException: (status.HTTP_400_BAD_REQUEST, "2fa_not_enabled"),
        TwoFactorAlreadyEnabledException: (
            status.HTTP_400_BAD_REQUEST,
            "2fa_already_enabled",
        ),
        TwoFactorSetupIncompleteException: (
            status.HTTP_400_BAD_REQUEST,
            "2fa_not_set_up",
        ),
        TwoFactorInvalidCodeException: (status.HTTP_400_BAD_REQUEST, "2fa_invalid_code"),
        TwoFactorInvalidRecoveryCodeException: (
            status.HTTP_400_BAD_REQUEST,
            "2fa_invalid_recovery_code",
        ),
        TwoFactorTempTokenExpiredException: (
            status.HTTP_401_UNAUTHORIZED,
            "2fa_temp_token_expired",
        ),
        TwoFactorConfigurationException: (
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "2fa_not_configured",
        ),
        TwoFactorStorageException: (
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "2fa_storage_error",
        ),
    }

    async def two_factor_exception_handler(
        request: Request, exc: TwoFactorException
    ) -> JSONResponse:
        """Handle 2FA exceptions."""
        status_code, error_type = mapping.get(
            type(exc), mapping[TwoFactorException]
        )
        sentry_sdk.set_tag("correlation_id", exc.correlation_id)
        sentry_sdk.set_tag("exception_type", exc.__class__.__name__)

        if status_code >= 500:
            logger.error(
                f"2FA unavailable: {exc.message}",
                exception_type=exc.__class__.__name__,
                path=str(request.url.path),
            )
        else:
            logger.warning(
                f"2FA error: {exc.message}",
                exception_type=exc.__class__.__name__,
                path=str(request.url.path),
            )
        return _error_response(exc, status_code, error_type)

    for exc_class in mapping:
        app_instance.add_exception_handler(exc_class, two_factor_exception_handler)  # type: ignore[arg-type]


_register_2fa_handlers(app)


# Include routers
app.include_router(auth_router.router, prefix="/api")
app.include_router(totp_router.router, prefix="/api")


@app.get("/api/health")
def health_check() -> dict[str, str]:
    """Liveness check."""
    return {"status": "ok"}
