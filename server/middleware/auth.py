"""Shared-secret admin authentication for write and admin routes."""

import secrets
from typing import Optional

from fastapi import Header, Request, status
from fastapi.responses import JSONResponse

from core.container import container
from core.logging import get_logger

logger = get_logger(__name__)


class AdminAuthError(Exception):
    """Missing or wrong admin key."""


async def require_admin(
    request: Request,
    x_admin_key: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
) -> None:
    """Accept the admin key from ``x-admin-key`` or ``Authorization``."""
    provided = x_admin_key or authorization
    expected = container.settings().admin_api_key

    if not provided or not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        client = request.client.host if request.client else "unknown"
        logger.warning("Admin authentication failed", path=request.url.path, client=client)
        raise AdminAuthError()


async def admin_auth_error_handler(request: Request, exc: AdminAuthError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={
            "error": "Unauthorized",
            "message": "Admin access required. Please provide valid admin key in x-admin-key header.",
        },
    )
