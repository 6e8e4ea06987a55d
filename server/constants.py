"""Centralized constants for cache keys, rate-limit budgets and routes."""

from typing import FrozenSet

# =============================================================================
# ROUTES
# =============================================================================

CHAPTERS_PATH = "/api/v1/chapters"
ADMIN_PATH = "/api/v1/admin"

# Paths that bypass rate limiting entirely
HEALTH_PATHS: FrozenSet[str] = frozenset([
    "/health",
    "/api/health",
])

# Path prefixes covered by the general-read budget
RATE_LIMITED_PREFIXES = (
    "/api/",
)

# Routes that carry their own budgets instead of the general one
RATE_LIMIT_EXEMPT_PREFIXES = (
    f"{ADMIN_PATH}/",
)

# =============================================================================
# RESPONSE CACHE
# =============================================================================

CACHE_KEY_PREFIX = "cache:"
CACHE_STATUS_HEADER = "X-Cache-Status"

# Every key under the collection's read path
CHAPTERS_CACHE_PATTERN = f"{CACHE_KEY_PREFIX}{CHAPTERS_PATH}*"

# Paths whose GET responses are cached
CACHEABLE_PATHS: FrozenSet[str] = frozenset([
    CHAPTERS_PATH,
])

# =============================================================================
# RATE LIMITING
# =============================================================================

RATE_LIMIT_KEY_PREFIX = "rate_limit:"

API_BUDGET = "api"
UPLOAD_BUDGET = "upload"
AUTH_BUDGET = "auth"
SENSITIVE_BUDGET = "sensitive"

BUDGET_MESSAGES = {
    API_BUDGET: "Too many API requests, please try again later.",
    UPLOAD_BUDGET: "Too many upload attempts, please try again later.",
    AUTH_BUDGET: "Too many authentication attempts, please try again later.",
    SENSITIVE_BUDGET: "Too many sensitive operations, please try again later.",
}
