"""
Rate Limiting Configuration for the Ledgerbook API

Protects login and registration from brute force and signup abuse, and
throttles the bulk chart and opening balance uploads.

Usage:
    from ledgerbook.utils.rate_limiter import limiter, RateLimits

    @router.post("/login")
    @limiter.limit(RateLimits.LOGIN)
    async def login(request: Request, ...):
        pass

Note: The `request: Request` parameter is REQUIRED for rate-limited endpoints.
Set RATE_LIMIT_ENABLED=false to switch limiting off (local runs and tests).
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
import logging

from ledgerbook.config import settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Get the client IP address from the request.
    Handles cases where the app is behind a proxy/load balancer.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first one
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


limiter = Limiter(key_func=get_client_ip, enabled=settings.rate_limit_enabled)


class RateLimits:
    """Rate limit configurations for different endpoint types"""

    LOGIN = "5/minute"
    REGISTER = "3/minute"
    BULK_OPERATIONS = "10/minute"   # Chart of accounts bulk save, opening balance import


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Return a JSON 429 with retry hints"""
    limit_info = str(exc.detail) if hasattr(exc, 'detail') else "Rate limit exceeded"

    client_ip = get_client_ip(request)
    logger.warning(f"Rate limit exceeded for IP {client_ip} on {request.url.path}: {limit_info}")

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "detail": "Too many requests. Please try again later.",
            "limit_info": limit_info,
            "retry_after": "60 seconds"
        },
        headers={
            "Retry-After": "60",
            "X-RateLimit-Limit": limit_info
        }
    )
