"""
FastAPI backend for the timesheet service's cache and session layer.

Services are built by the dependency injection container; the backing
store is opened once at startup and shared by cache and sessions.
"""

from contextlib import asynccontextmanager
from datetime import datetime

from dependency_injector import providers
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from core.store import open_store
from middleware.session import SessionMiddleware
from routers import cache, sessions

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    settings = container.settings()
    configure_logging(settings)
    set_startup_time()
    logger.info("Starting timesheet services")

    store = await open_store(settings)
    container.store.override(providers.Object(store))

    await container.cache().startup()

    cleanup = container.cleanup()
    if settings.cleanup_enabled and store.backend == "memory":
        await cleanup.start()

    logger.info("Services started successfully", backend=store.backend)
    yield

    await cleanup.stop()
    await container.cache().shutdown()
    await store.close()
    container.store.reset_override()
    container.reset_singletons()
    logger.info("Services shutdown complete")


app = FastAPI(
    title="Timesheet Services",
    version="1.0.0",
    description="Cache and session services for the timesheet backend",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("Unhandled exception", path=request.url.path,
                         error=f"{type(e).__name__}: {e}", exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": type(e).__name__,
                    "detail": "Internal server error"
                }
            )


# Added last runs first: exceptions -> CORS -> sessions
app.add_middleware(SessionMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=container.settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CatchAllExceptionsMiddleware)

app.include_router(sessions.router)
app.include_router(cache.router)


@app.get("/health")
async def health_check():
    """Detailed health check."""
    settings = container.settings()
    health = await get_health_status(
        cache=container.cache(),
        sessions=container.sessions(),
        cleanup=container.cleanup(),
        settings=settings
    )
    return {
        **health,
        "service": "timesheet",
        "environment": "development" if settings.debug else "production",
        "timestamp": datetime.now().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    settings = container.settings()
    logger.info("Starting timesheet services",
                host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
