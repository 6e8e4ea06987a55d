"""Administrative operations on the cache and rate-limit counters."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Response
from pydantic import BaseModel

from constants import (
    ADMIN_PATH, AUTH_BUDGET, CACHE_KEY_PREFIX, CHAPTERS_CACHE_PATTERN,
    RATE_LIMIT_KEY_PREFIX, SENSITIVE_BUDGET,
)
from core.container import container
from core.logging import get_logger
from middleware.auth import require_admin
from middleware.rate_limit import RateLimit

logger = get_logger(__name__)
router = APIRouter(prefix=ADMIN_PATH, tags=["admin"])


class InvalidateRequest(BaseModel):
    pattern: str = CHAPTERS_CACHE_PATTERN


@router.delete("/rate-limits/{client}",
               dependencies=[Depends(RateLimit(AUTH_BUDGET)), Depends(require_admin)])
async def reset_rate_limit(client: str):
    """Reset a client's counters in every budget."""
    client_key = f"{RATE_LIMIT_KEY_PREFIX}{client}"
    budgets = await container.rate_limiters().reset(client_key)
    return {"success": True, "client": client, "budgets": budgets}


@router.post("/cache/invalidate",
             dependencies=[Depends(RateLimit(SENSITIVE_BUDGET)), Depends(require_admin)])
async def invalidate_cache(
    response: Response,
    request: Optional[InvalidateRequest] = Body(default=None),
):
    """Drop cached responses matching a pattern (defaults to the chapter list)."""
    pattern = request.pattern if request else CHAPTERS_CACHE_PATTERN
    if not pattern.startswith(CACHE_KEY_PREFIX):
        response.status_code = 400
        return {"success": False, "message": f"Pattern must start with '{CACHE_KEY_PREFIX}'"}

    invalidated = await container.response_cache().invalidate(pattern)
    return {"success": True, "pattern": pattern, "invalidated": invalidated}
