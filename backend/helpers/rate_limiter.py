"""Rate limiter configuration module.

Kept separate from main.py so routers can import the limiter without a
circular import.
"""

from slowapi import Limiter

from helpers.request_utils import get_client_ip_or_unknown

limiter = Limiter(key_func=get_client_ip_or_unknown)
