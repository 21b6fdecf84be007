"""
Sentry SDK configuration.

Sentry is only initialised when SENTRY_DSN is set. Events are scrubbed of
PII and of anything that looks like a 2FA credential before leaving the
process.
"""

import os
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.loguru import LoguruIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.types import Event, Hint

# Request body keys that carry secrets or one-time codes
SENSITIVE_BODY_KEYS = frozenset(
    {"password", "token", "code", "tempToken", "temp_token", "secret"}
)


def _scrub_body(data: Any) -> Any:
    """Replace sensitive values in a captured JSON request body."""
    if isinstance(data, dict):
        return {
            key: "[Filtered]" if key in SENSITIVE_BODY_KEYS else value
            for key, value in data.items()
        }
    return data


def _before_send(event: Event, hint: Hint) -> Event | None:
    """
    Scrub PII and 2FA material before an event is sent.

    - Drops email and username from the user context
    - Filters the Authorization header and cookies
    - Filters passwords, TOTP codes, recovery codes and secrets in bodies

    Args:
        event: Sentry event.
        hint: Additional context about the event.

    Returns:
        The scrubbed event.
    """
    user = event.get("user")
    if user:
        user.pop("email", None)
        user.pop("username", None)
        if "ip_address" in user:
            user["ip_address"] = "{{auto}}"

    request = event.get("request")
    if request and isinstance(request, dict):
        request.pop("cookies", None)
        headers = request.get("headers")
        if isinstance(headers, dict) and "Authorization" in headers:
            headers["Authorization"] = "[Filtered]"
        if "data" in request:
            request["data"] = _scrub_body(request["data"])

    return event


def _traces_sampler(sampling_context: dict[str, Any]) -> float:
    """
    Pick a trace sample rate for a request.

    Args:
        sampling_context: Context about the request being sampled.

    Returns:
        Sample rate between 0.0 and 1.0.
    """
    if sampling_context.get("parent_sampled") is True:
        return 1.0

    asgi_scope = sampling_context.get("asgi_scope", {})
    path = asgi_scope.get("path", "")

    if path == "/api/health":
        return 0.0

    # Authentication traffic is security relevant
    if path.startswith("/api/auth") or path.startswith("/api/2fa"):
        return 0.5

    return 0.2


def init_sentry() -> None:
    """
    Initialize the Sentry SDK.

    Call before the FastAPI app is created. No-op when SENTRY_DSN is unset.
    """
    dsn = os.getenv("SENTRY_DSN")

    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=os.getenv("ENVIRONMENT", "development"),
        release=os.getenv("SENTRY_RELEASE", "unknown"),
        send_default_pii=False,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoguruIntegration(),
        ],
        traces_sampler=_traces_sampler,
        sample_rate=1.0,
        before_send=_before_send,
        attach_stacktrace=True,
        max_breadcrumbs=50,
        ignore_errors=[KeyboardInterrupt, SystemExit],
    )
