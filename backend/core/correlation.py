"""
Request correlation ids.

Every request gets a short id that is attached to log records, Sentry events
and error responses, so a user-reported failure can be traced back.
"""

import uuid
from contextvars import ContextVar

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id() -> str:
    """
    Generate a new correlation id.

    Returns:
        8 lowercase hex characters, short enough to read out over the phone.
    """
    return uuid.uuid4().hex[:8]


def get_correlation_id() -> str:
    """Return the id bound to the current context, or an empty string."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Bind a correlation id to the current request context."""
    correlation_id_var.set(correlation_id)
