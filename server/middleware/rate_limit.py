"""Rate limiting middleware and per-route budget dependencies.

Emitted headers:
    X-RateLimit-Limit, X-RateLimit-Remaining, X-RateLimit-Reset, Retry-After (on 429)
"""

import time
from typing import Optional, Tuple

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from constants import (
    API_BUDGET, HEALTH_PATHS, RATE_LIMIT_EXEMPT_PREFIXES, RATE_LIMIT_KEY_PREFIX, RATE_LIMITED_PREFIXES,
)
from core.config import Settings
from core.container import container
from services.rate_limiter import RateLimitBudget, RateLimitDecision


def client_identity(request: Request, settings: Settings) -> str:
    """Rate-limit key for the calling client's network address."""
    if settings.rate_limit_trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return f"{RATE_LIMIT_KEY_PREFIX}{forwarded.split(',')[0].strip()}"
    host = request.client.host if request.client else "unknown"
    return f"{RATE_LIMIT_KEY_PREFIX}{host}"


def rate_limited_response(budget: RateLimitBudget, decision: RateLimitDecision,
                          now: float) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "Too Many Requests",
            "message": budget.message,
            "retryAfter": decision.retry_after,
            "limit": budget.max_requests,
            "windowMs": budget.window_seconds * 1000,
        },
        headers=decision.headers(now),
    )


class RateLimitExceeded(Exception):
    """Raised by route-level budgets; rendered as a 429 by the app."""

    def __init__(self, budget: RateLimitBudget, decision: RateLimitDecision):
        self.budget = budget
        self.decision = decision
        super().__init__(f"Rate limit exceeded for budget '{budget.name}'")


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return rate_limited_response(exc.budget, exc.decision, time.time())


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply the general-read budget to API paths.

    Health paths bypass limiting before the client key is derived, and admin
    paths are left to their own budgets. Headers already set by a route-level
    budget are left untouched.
    """

    def __init__(self, app, budget: str = API_BUDGET,
                 prefixes: Tuple[str, ...] = RATE_LIMITED_PREFIXES):
        super().__init__(app)
        self.budget = budget
        self.prefixes = prefixes

    def _is_limited_path(self, path: str) -> bool:
        if path in HEALTH_PATHS or path.startswith(RATE_LIMIT_EXEMPT_PREFIXES):
            return False
        return path.startswith(self.prefixes)

    async def dispatch(self, request: Request, call_next):
        if not self._is_limited_path(request.url.path):
            return await call_next(request)

        settings = container.settings()
        if not settings.rate_limit_enabled:
            return await call_next(request)

        limiter = container.rate_limiters().get(self.budget)
        client_key = client_identity(request, settings)
        decision = await limiter.check(client_key)

        if not decision.allowed:
            return rate_limited_response(limiter.budget, decision, time.time())

        response = await call_next(request)

        if settings.rate_limit_skip_failed_requests and response.status_code >= 400:
            await limiter.refund(client_key)

        for name, value in decision.headers(time.time()).items():
            response.headers.setdefault(name, value)
        return response


class RateLimit:
    """FastAPI dependency enforcing a named budget on a single route."""

    def __init__(self, budget: str):
        self.budget = budget

    async def __call__(self, request: Request, response: Response) -> Optional[RateLimitDecision]:
        settings = container.settings()
        if not settings.rate_limit_enabled:
            return None

        limiter = container.rate_limiters().get(self.budget)
        decision = await limiter.check(client_identity(request, settings))
        if not decision.allowed:
            raise RateLimitExceeded(limiter.budget, decision)

        response.headers.update(decision.headers(time.time()))
        return decision
