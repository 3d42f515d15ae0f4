"""
Shared rate limiter, registered on the app in main and applied per route.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from iptv_relay.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def proxy_rate_limit() -> str:
    """Limit string for the stream proxy route."""
    return f"{get_settings().proxy_rate_limit_per_minute}/minute"
