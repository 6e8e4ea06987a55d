"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.backend import RedisBackend
from core.config import Settings
from core.database import Database
from services.chapters import ChapterService
from services.rate_limiter import RateLimiterRegistry
from services.response_cache import ResponseCache


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Data store
    database = providers.Singleton(
        Database,
        settings=settings
    )

    # Redis handle shared by the response cache and the rate limiters
    backend = providers.Singleton(
        RedisBackend,
        settings=settings
    )

    response_cache = providers.Singleton(
        ResponseCache,
        settings=settings,
        backend=backend
    )

    rate_limiters = providers.Singleton(
        RateLimiterRegistry,
        settings=settings,
        backend=backend
    )

    # Services
    chapter_service = providers.Factory(
        ChapterService,
        database=database,
        cache=response_cache,
        settings=settings
    )


# Global container instance
container = Container()
