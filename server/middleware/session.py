"""Session middleware and the route dependencies that enforce it.

The middleware only resolves the session cookie; routes opt into
enforcement with require_session or require_admin.
"""

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.logging import get_logger
from services.sessions import SessionRecord

logger = get_logger(__name__)

# Paths that never need a session lookup
SKIP_PATHS = frozenset([
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
])


class SessionMiddleware(BaseHTTPMiddleware):
    """Attach the live session (or None) to request.state.session.

    An unknown or expired cookie simply yields no session.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.session = None

        if request.url.path not in SKIP_PATHS:
            settings = container.settings()
            session_id = request.cookies.get(settings.session_cookie_name)
            if session_id:
                request.state.session = await container.sessions().get(session_id)
                if request.state.session is None:
                    logger.debug("Stale session cookie", path=request.url.path)

        return await call_next(request)


def is_admin(session: SessionRecord) -> bool:
    return session.user_id in container.settings().admin_user_ids


def require_session(request: Request) -> SessionRecord:
    """Route dependency: the caller's live session or 401."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return session


def require_admin(request: Request) -> SessionRecord:
    """Route dependency: a live session whose user is listed in ADMIN_USER_IDS."""
    session = require_session(request)
    if not is_admin(session):
        logger.warning("Admin route refused", user_id=session.user_id, path=request.url.path)
        raise HTTPException(status_code=403, detail="Admin access required")
    return session
