"""
Rate limiting for Crewboard.

Mission claims, search and posting endpoints are throttled per client
address with slowapi.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from crewboard.core.config import get_settings

settings = get_settings()

limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Report throttled requests in the same shape as other API errors."""
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "Rate limit exceeded. Please try again later.",
            "code": "rate_limited",
            "retry_after": exc.detail,
        },
        headers={"Retry-After": "60"},
    )


def setup_rate_limiting(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


def rate_limit_claims():
    return limiter.limit(settings.claim_rate_limit)


def rate_limit_search():
    return limiter.limit(settings.search_rate_limit)


def rate_limit_posts():
    return limiter.limit(settings.post_rate_limit)
