"""
Request utilities for extracting client information.
"""

from typing import Optional

from fastapi import Request


def get_client_ip(request: Request) -> Optional[str]:
    """
    Extract the client's real IP address from the request.

    Handles common proxy headers in order of precedence:
    1. X-Real-IP (nginx)
    2. X-Forwarded-For (standard proxy header, first IP)
    3. Direct client.host

    Args:
        request: FastAPI request object

    Returns:
        Client IP address or None if not available
    """
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_ip = forwarded_for.split(",")[0].strip()
        if first_ip:
            return first_ip

    if request.client:
        return request.client.host

    return None


def get_client_ip_or_unknown(request: Request) -> str:
    """Rate-limit key function: client IP, or a shared bucket when unknown."""
    return get_client_ip(request) or "unknown"
