# faceauth/sessions.py
# Cookie-keyed, server-side state for the registration form -> capture hop.
import logging
import secrets
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterator, Optional

from .config import SESSION_TTL

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EphemeralSession:
    session_id: Optional[str]
    pending_profile: Optional[dict] = None
    temp_upload_ref: Optional[str] = None
    upload_committed: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    def track_upload(self, ref: str) -> None:
        self.temp_upload_ref = ref
        self.upload_committed = False

    def commit_upload(self) -> None:
        self.upload_committed = True


class SessionManager:
    def __init__(self, ttl: timedelta = SESSION_TTL, release_upload: Optional[Callable[[str], object]] = None):
        self.ttl = ttl
        self._release_upload = release_upload
        self._sessions: Dict[str, EphemeralSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def stage_profile(self, session_id: Optional[str], fields: dict) -> str:
        """Create (or reuse) the browser's session and stage the profile form fields."""
        with self._lock:
            session = self._live(session_id)
            if session is None:
                session_id = secrets.token_urlsafe(32)
                session = EphemeralSession(session_id=session_id)
                self._sessions[session_id] = session
            session.pending_profile = dict(fields)
            return session.session_id

    def peek(self, session_id: Optional[str]) -> Optional[EphemeralSession]:
        with self._lock:
            return self._live(session_id)

    def _live(self, session_id: Optional[str]) -> Optional[EphemeralSession]:
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is not None and _utcnow() - session.created_at > self.ttl:
            self._sessions.pop(session_id, None)
            return None
        return session

    @contextmanager
    def flow(self, session_id: Optional[str]) -> Iterator[EphemeralSession]:
        """
        Hand the browser's session to one capture submission.
        On every exit path the session is dropped and an uncommitted
        in-flight upload is released.
        """
        with self._lock:
            session = self._live(session_id)
        if session is None:
            session = EphemeralSession(session_id=None)
        try:
            yield session
        finally:
            self._release(session)

    def destroy(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        with self._lock:
            session = self._sessions.get(session_id)
        if session is not None:
            self._release(session)

    def _release(self, session: EphemeralSession) -> None:
        if session.session_id:
            with self._lock:
                self._sessions.pop(session.session_id, None)
        ref = session.temp_upload_ref
        if ref and not session.upload_committed and self._release_upload is not None:
            try:
                self._release_upload(ref)
            except Exception:
                logger.exception("Failed to release in-flight upload")
        session.pending_profile = None
        session.temp_upload_ref = None

    def sweep(self, now: Optional[datetime] = None) -> int:
        now = now or _utcnow()
        with self._lock:
            stale = [s for s in self._sessions.values() if now - s.created_at > self.ttl]
        for session in stale:
            self._release(session)
        return len(stale)
