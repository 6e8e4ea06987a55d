"""Response cache middleware for idempotent collection reads."""

from typing import Iterable

from fastapi import Request
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from constants import CACHE_STATUS_HEADER, CACHEABLE_PATHS
from core.container import container
from core.logging import get_logger
from services.response_cache import CachedResponse

logger = get_logger(__name__)


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Serve GET requests on cacheable paths from the response cache.

    Hits are returned without calling the route. On a miss the route's 200
    response body is captured and written back after the response is sent.
    Every response on a cacheable path carries the X-Cache-Status header.
    """

    def __init__(self, app, paths: Iterable[str] = CACHEABLE_PATHS):
        super().__init__(app)
        self.paths = frozenset(paths)

    async def dispatch(self, request: Request, call_next):
        if request.method != "GET" or request.url.path not in self.paths:
            return await call_next(request)

        cache = container.response_cache()
        lookup = await cache.intercept(request.method, request.url.path, request.url.query)

        if lookup.is_hit:
            return lookup.response.to_response()

        response = await call_next(request)

        if not lookup.is_miss or response.status_code != 200:
            response.headers[CACHE_STATUS_HEADER] = lookup.status.value
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        background = None
        try:
            captured = CachedResponse.capture(response.status_code, body,
                                              response.headers.get("content-type"))
            background = BackgroundTask(cache.store, lookup.key, captured)
        except UnicodeDecodeError as e:
            logger.warning("Response not cacheable", key=lookup.key, error=str(e))

        cached = Response(
            content=body,
            status_code=response.status_code,
            headers=dict(response.headers),
            background=background,
        )
        cached.headers[CACHE_STATUS_HEADER] = lookup.status.value
        return cached
