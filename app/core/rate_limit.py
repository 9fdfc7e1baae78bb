"""
slowapi limiter shared by the app and the routes that throttle callers.
"""
from slowapi import Limiter
from starlette.requests import Request

from app.core import config


def get_authorization_header(request: Request) -> str:
    """Rate-limit key: one bucket per bearer token."""
    return request.headers.get("Authorization") or "anonymous"


limiter = Limiter(key_func=get_authorization_header, enabled=config.RATE_LIMIT_ENABLED)
