import secrets
import threading
import time
from dataclasses import dataclass
from typing import Annotated, Callable, Optional

from fastapi import Depends, Request, Response

from vidfrompdf.services.project_service import ProjectService
from vidfrompdf.services.storage_service import LocalStorageService


@dataclass
class SessionEntry:
    project_id: str
    last_seen: float


class SessionRegistry:
    """Maps browser sessions to the project each one is working on.

    Entries idle for longer than ttl_seconds expire, and at most max_entries
    are kept; the least recently seen session goes first.
    """

    def __init__(
        self,
        ttl_seconds: float = 86400,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._current: dict[str, SessionEntry] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._current)

    def current(self, session_id: str) -> Optional[str]:
        with self._lock:
            entry = self._current.get(session_id)
            if entry is None:
                return None
            now = self._clock()
            if now - entry.last_seen > self._ttl:
                del self._current[session_id]
                return None
            entry.last_seen = now
            return entry.project_id

    def bind(self, session_id: str, project_id: str) -> Optional[str]:
        """Make project_id the session's current project. Returns the previous one."""
        with self._lock:
            self._cleanup_expired()
            entry = self._current.pop(session_id, None)
            previous = entry.project_id if entry is not None else None
            while len(self._current) >= self._max_entries:
                oldest = min(self._current, key=lambda s: self._current[s].last_seen)
                del self._current[oldest]
            self._current[session_id] = SessionEntry(project_id, self._clock())
            return previous

    def forget_project(self, project_id: str) -> None:
        with self._lock:
            for session_id in [s for s, e in self._current.items() if e.project_id == project_id]:
                del self._current[session_id]

    def _cleanup_expired(self) -> None:
        """Remove idle entries (called under lock)."""
        now = self._clock()
        expired = [s for s, e in self._current.items() if now - e.last_seen > self._ttl]
        for session_id in expired:
            del self._current[session_id]


@dataclass
class SessionContext:
    """Per-request view of one session, passed explicitly into handlers."""

    session_id: str
    registry: SessionRegistry

    @property
    def project_id(self) -> Optional[str]:
        return self.registry.current(self.session_id)

    def bind(self, project_id: str) -> Optional[str]:
        return self.registry.bind(self.session_id, project_id)


def get_session(request: Request, response: Response) -> SessionContext:
    """Read the session cookie, issuing a new session when there is none."""
    cookie_name = request.app.state.settings.session_cookie_name
    session_id = request.cookies.get(cookie_name)
    if not session_id:
        session_id = secrets.token_urlsafe(16)
        response.set_cookie(cookie_name, session_id, httponly=True, samesite="strict")
    return SessionContext(session_id=session_id, registry=request.app.state.sessions)


def get_project_service(request: Request) -> ProjectService:
    return request.app.state.project_service


def get_storage(request: Request) -> LocalStorageService:
    return request.app.state.project_service.storage


# Type aliases for dependency injection
CurrentSession = Annotated[SessionContext, Depends(get_session)]
Service = Annotated[ProjectService, Depends(get_project_service)]
Storage = Annotated[LocalStorageService, Depends(get_storage)]
