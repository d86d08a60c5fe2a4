"""Session records with expiration and per-user revocation.

Key schema:
    session:{id} -> JSON SessionRecord (store TTL = remaining lifetime)

Sessions live on the same kind of backing store as the cache but never
touch the cache service. Store failures degrade to "no session", which
callers treat as unauthenticated.
"""

import json
import math
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.config import Settings
from core.logging import get_logger, log_session_event
from core.store import KeyValueStore

logger = get_logger(__name__)

IMMUTABLE_FIELDS = frozenset({"id", "user_id", "created_at"})


@dataclass
class SessionRecord:
    """A single login session."""
    id: str
    user_id: str
    created_at: float
    expires_at: float
    data: Dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def remaining(self, now: Optional[float] = None) -> float:
        """Seconds until expiry (never negative)."""
        return max(self.expires_at - (now if now is not None else time.time()), 0.0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        """Create from dict."""
        return cls(
            id=data["id"],
            user_id=str(data["user_id"]),
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            data=data.get("data") or {},
        )


class SessionPersistError(RuntimeError):
    """A new session could not be written to the backing store."""


class SessionStore:
    """TTL-keyed session store.

    All lookups check expires_at on read, so expiry holds even when the
    backing store has not evicted the key yet.
    """

    def __init__(self, store: KeyValueStore, settings: Settings):
        self.store = store
        self.settings = settings
        self.prefix = settings.session_prefix
        self.default_ttl = settings.session_ttl
        self.max_ttl = settings.session_max_ttl

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    async def _save(self, record: SessionRecord) -> bool:
        # Serialization errors are caller bugs and propagate; store errors do not
        payload = json.dumps(record.to_dict())
        try:
            await self.store.set(self._key(record.id), payload, record.remaining())
            return True
        except Exception as e:
            logger.error("Session save failed", session=record.id[:8], error=str(e))
            return False

    async def _load(self, session_id: str) -> Optional[SessionRecord]:
        try:
            raw = await self.store.get(self._key(session_id))
        except Exception as e:
            logger.error("Session load failed", session=session_id[:8], error=str(e))
            return None
        if raw is None:
            return None
        try:
            record = SessionRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Corrupt session record", session=session_id[:8], error=str(e))
            await self._discard(session_id)
            return None
        if not math.isfinite(record.expires_at):
            logger.error("Session record has no finite expiry", session=session_id[:8])
            await self._discard(session_id)
            return None
        return record

    async def _discard(self, session_id: str) -> bool:
        try:
            return await self.store.delete(self._key(session_id)) > 0
        except Exception as e:
            logger.error("Session delete failed", session=session_id[:8], error=str(e))
            return False

    async def create(self, user_id: str, ttl: Optional[int] = None,
                     data: Optional[Dict[str, Any]] = None) -> SessionRecord:
        """Create and persist a new session for user_id.

        Raises:
            ValueError: if ttl is not positive or exceeds session_max_ttl
            TypeError: if data is not JSON-serializable
            SessionPersistError: if the backing store rejected the write
        """
        ttl = self.default_ttl if ttl is None else ttl
        if not math.isfinite(ttl) or ttl <= 0:
            raise ValueError(f"Session TTL must be positive, got {ttl}")
        if ttl > self.max_ttl:
            raise ValueError(f"Session TTL {ttl} exceeds maximum of {self.max_ttl}")

        now = time.time()
        record = SessionRecord(
            id=secrets.token_urlsafe(32),
            user_id=str(user_id),
            created_at=now,
            expires_at=now + ttl,
            data=dict(data or {}),
        )
        if not await self._save(record):
            raise SessionPersistError(f"Could not persist session for user {record.user_id}")
        log_session_event(logger, "created", record.id, user_id=record.user_id, ttl=ttl)
        return record

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        """Return the live session, or None. Expired records are removed."""
        record = await self._load(session_id)
        if record is None:
            return None
        if record.is_expired():
            await self._discard(session_id)
            log_session_event(logger, "expired", session_id, user_id=record.user_id)
            return None
        return record

    async def update(self, session_id: str, changes: Dict[str, Any]) -> Optional[SessionRecord]:
        """Merge changes into a live session.

        data is merged key by key; any other unknown field lands in data.
        The remaining TTL is kept unless changes carries an explicit
        expires_at, which must be finite and no later than
        created_at + session_max_ttl. id, user_id and created_at cannot
        be changed.

        Returns:
            The merged record, or None if the session is missing, expired
            or could not be re-persisted

        Raises:
            ValueError: on immutable fields or an invalid expires_at
        """
        immutable = IMMUTABLE_FIELDS.intersection(changes)
        if immutable:
            raise ValueError(f"Cannot update session fields: {sorted(immutable)}")

        changes = dict(changes)
        new_expiry = None
        if "expires_at" in changes:
            new_expiry = float(changes.pop("expires_at"))
            if not math.isfinite(new_expiry):
                raise ValueError("expires_at must be a finite timestamp")

        record = await self.get(session_id)
        if record is None:
            return None

        if new_expiry is not None:
            latest = record.created_at + self.max_ttl
            if new_expiry > latest:
                raise ValueError(f"expires_at is beyond the maximum session lifetime ({self.max_ttl}s)")
            record.expires_at = new_expiry
        if "data" in changes:
            record.data.update(changes.pop("data") or {})
        record.data.update(changes)

        if record.is_expired():
            await self._discard(session_id)
            log_session_event(logger, "expired", session_id, user_id=record.user_id)
            return None

        if not await self._save(record):
            return None
        log_session_event(logger, "updated", session_id, user_id=record.user_id)
        return record

    async def delete(self, session_id: str) -> bool:
        """Delete a session. Returns True if it existed."""
        deleted = await self._discard(session_id)
        if deleted:
            log_session_event(logger, "deleted", session_id)
        return deleted

    async def list_sessions(self, user_id: Optional[str] = None) -> List[SessionRecord]:
        """All live sessions, optionally for one user.

        Linear scan over the session namespace; expired records found
        along the way are purged.
        """
        try:
            keys = await self.store.keys(f"{self.prefix}*")
        except Exception as e:
            logger.error("Session scan failed", error=str(e))
            return []

        now = time.time()
        sessions = []
        for key in keys:
            session_id = key[len(self.prefix):]
            record = await self._load(session_id)
            if record is None:
                continue
            if record.is_expired(now):
                await self._discard(session_id)
                continue
            if user_id is None or record.user_id == str(user_id):
                sessions.append(record)
        return sessions

    async def delete_all_for_user(self, user_id: str) -> int:
        """Revoke every session belonging to user_id. Returns the count removed."""
        revoked = 0
        for record in await self.list_sessions(user_id=user_id):
            if await self._discard(record.id):
                revoked += 1
        logger.info("Sessions revoked for user", user_id=str(user_id), count=revoked)
        return revoked

    async def count(self) -> int:
        """Number of session keys in the store, without decoding records.

        Keys already past their store TTL are not counted; a record whose
        own expires_at passed but whose key lingers is, until next read.
        """
        try:
            return len(await self.store.keys(f"{self.prefix}*"))
        except Exception as e:
            logger.error("Session count failed", error=str(e))
            return 0
