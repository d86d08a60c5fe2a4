"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.store import KeyValueStore
from core.cache import CacheService
from core.cleanup import CleanupService
from services.sessions import SessionStore


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Backing store, chosen by open_store() and overridden at startup
    store = providers.Dependency(instance_of=KeyValueStore)

    # Cache service (Redis when reachable, in-memory otherwise)
    cache = providers.Singleton(
        CacheService,
        store=store,
        settings=settings
    )

    sessions = providers.Singleton(
        SessionStore,
        store=store,
        settings=settings
    )

    cleanup = providers.Singleton(
        CleanupService,
        store=store,
        settings=settings
    )


# Global container instance
container = Container()
