"""Session routes: login-style creation, lookup, update and revocation.

Only POST /api/sessions is public. Every other route needs a live session
and acts on the caller's own sessions unless the caller is an admin.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field

from core.config import Settings
from core.container import container
from core.logging import get_logger
from middleware.response_cache import cache_response, invalidate_responses
from middleware.session import is_admin, require_session
from services.sessions import SessionPersistError, SessionRecord, SessionStore

logger = get_logger(__name__)
router = APIRouter(prefix="/api/sessions", tags=["sessions"])

LIST_CACHE_PREFIX = "sessions-list"


class CreateSessionRequest(BaseModel):
    user_id: str = Field(min_length=1)
    ttl_seconds: Optional[int] = Field(default=None, gt=0)
    data: Dict[str, Any] = Field(default_factory=dict)


class UpdateSessionRequest(BaseModel):
    data: Optional[Dict[str, Any]] = None
    expires_at: Optional[float] = Field(default=None, allow_inf_nan=False)


def get_sessions() -> SessionStore:
    return container.sessions()


def get_settings() -> Settings:
    return container.settings()


def _set_cookie(response: Response, settings: Settings, record: SessionRecord) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=record.id,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=int(record.remaining())
    )


def _clear_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite
    )


def _summary(record: SessionRecord) -> Dict[str, Any]:
    """Listing entry. Session ids are bearer tokens, so only a prefix is shown."""
    return {
        "id_hint": record.id[:8],
        "user_id": record.user_id,
        "created_at": record.created_at,
        "expires_at": record.expires_at,
        "data": record.data,
    }


async def _visible_session(session_id: str, caller: SessionRecord,
                           sessions: SessionStore) -> SessionRecord:
    """Load a session the caller owns (any session for admins), else 404."""
    record = await sessions.get(session_id)
    if record is None or (record.user_id != caller.user_id and not is_admin(caller)):
        raise HTTPException(status_code=404, detail="Session not found or expired")
    return record


@router.post("")
async def create_session(
    body: CreateSessionRequest,
    response: Response,
    sessions: SessionStore = Depends(get_sessions),
    settings: Settings = Depends(get_settings)
):
    """Create a session for a user and set the session cookie."""
    try:
        record = await sessions.create(body.user_id, ttl=body.ttl_seconds, data=body.data)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SessionPersistError as e:
        logger.error("Session not created", user_id=body.user_id, error=str(e))
        raise HTTPException(status_code=503, detail="Session store unavailable")

    await invalidate_responses(LIST_CACHE_PREFIX)
    _set_cookie(response, settings, record)
    return {"success": True, "session": record.to_dict()}


@router.get("/current")
async def current_session(session: SessionRecord = Depends(require_session)):
    """Session attached to the request cookie."""
    return session.to_dict()


@router.get("")
@cache_response(LIST_CACHE_PREFIX, ttl=30, per_user=True)
async def list_sessions(
    request: Request,
    user_id: Optional[str] = None,
    caller: SessionRecord = Depends(require_session),
    sessions: SessionStore = Depends(get_sessions)
):
    """List live sessions. Non-admins only ever see their own."""
    if not is_admin(caller):
        if user_id is not None and user_id != caller.user_id:
            raise HTTPException(status_code=403, detail="Cannot list other users' sessions")
        user_id = caller.user_id

    records = await sessions.list_sessions(user_id=user_id)
    return {"count": len(records), "sessions": [_summary(r) for r in records]}


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    caller: SessionRecord = Depends(require_session),
    sessions: SessionStore = Depends(get_sessions)
):
    record = await _visible_session(session_id, caller, sessions)
    return record.to_dict()


@router.patch("/{session_id}")
async def update_session(
    session_id: str,
    body: UpdateSessionRequest,
    caller: SessionRecord = Depends(require_session),
    sessions: SessionStore = Depends(get_sessions)
):
    """Merge data into a session. Expiry changes only when expires_at is sent."""
    await _visible_session(session_id, caller, sessions)
    try:
        record = await sessions.update(session_id, body.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    await invalidate_responses(LIST_CACHE_PREFIX)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found or expired")
    return record.to_dict()


@router.delete("/{session_id}")
async def delete_session(
    session_id: str,
    response: Response,
    caller: SessionRecord = Depends(require_session),
    sessions: SessionStore = Depends(get_sessions),
    settings: Settings = Depends(get_settings)
):
    """Delete one session; clears the cookie when it was the caller's own."""
    await _visible_session(session_id, caller, sessions)
    deleted = await sessions.delete(session_id)
    await invalidate_responses(LIST_CACHE_PREFIX)
    if session_id == caller.id:
        _clear_cookie(response, settings)
    return {"success": deleted}


@router.delete("/user/{user_id}")
async def revoke_user_sessions(
    user_id: str,
    response: Response,
    caller: SessionRecord = Depends(require_session),
    sessions: SessionStore = Depends(get_sessions),
    settings: Settings = Depends(get_settings)
):
    """Log a user out everywhere. Users may revoke their own sessions only."""
    if user_id != caller.user_id and not is_admin(caller):
        raise HTTPException(status_code=403, detail="Cannot revoke other users' sessions")

    revoked = await sessions.delete_all_for_user(user_id)
    await invalidate_responses(LIST_CACHE_PREFIX)
    if caller.user_id == user_id:
        _clear_cookie(response, settings)
    logger.info("Sessions revoked", user_id=user_id, revoked=revoked, by=caller.user_id)
    return {"success": True, "revoked": revoked}
