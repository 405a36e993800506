"""
slowapi rate limiter instance.
Import `limiter` into routers and decorate endpoints with @limiter.limit(...).

IMPORTANT: Every rate-limited endpoint MUST have `request: Request` as a parameter
(slowapi needs it to extract the client IP). The @limiter.limit decorator must be
placed BELOW the @router.xxx decorator, not above it.

default_limits covers every other route (e.g. /health) through SlowAPIMiddleware,
which create_app() mounts.

This is the coarse per-IP layer. Per-scope cooldown and per-code attempt
lockout live in otp_service.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200/minute"],
    enabled=settings.rate_limit_enabled,
)
