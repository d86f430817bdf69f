"""
Operative session tokens.

The store is created once per app (see main.create_app) and reached through
request.app.state, never as a module global.
"""
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass(frozen=True)
class OperativeSession:
    user_id: int
    company_id: int
    email: Optional[str]
    created_at: float


class SessionStore:
    def create(self, user_id: int, company_id: int, email: Optional[str] = None) -> str:
        raise NotImplementedError

    def get(self, token: str) -> Optional[OperativeSession]:
        raise NotImplementedError

    def delete(self, token: str) -> None:
        raise NotImplementedError

    def purge_expired(self) -> int:
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    """Token -> session map whose entries expire `ttl_seconds` after creation."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, OperativeSession] = {}
        self._lock = threading.Lock()

    def _expired(self, session: OperativeSession, now: float) -> bool:
        return now - session.created_at > self.ttl_seconds

    def create(self, user_id: int, company_id: int, email: Optional[str] = None) -> str:
        token = secrets.token_hex(32)
        with self._lock:
            self._sessions[token] = OperativeSession(
                user_id=user_id,
                company_id=company_id,
                email=email,
                created_at=self._clock(),
            )
        return token

    def get(self, token: str) -> Optional[OperativeSession]:
        if not token or not isinstance(token, str):
            return None
        token = token.strip()
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if self._expired(session, self._clock()):
                del self._sessions[token]
                return None
            return session

    def delete(self, token: str) -> None:
        if not token:
            return
        with self._lock:
            self._sessions.pop(token.strip(), None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [t for t, s in self._sessions.items() if self._expired(s, now)]
            for token in expired:
                del self._sessions[token]
        return len(expired)
