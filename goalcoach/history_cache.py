# goalcoach/history_cache.py
import threading
import time
from typing import Callable

from goalcoach.session import GoalSession
from goalcoach.settings import SESSION_TTL_SECONDS


class SessionCache:
    """
    In-memory, per-session GoalSession store with:
    - sliding TTL (expires ttl_seconds after last touch)
    - thread-safe operations (the HTTP server may run handlers in a threadpool)
    Sessions never share state; the cache only maps ids to them.
    """

    def __init__(self, ttl_seconds: int = SESSION_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # session_id -> {"session": GoalSession, "expires_at": float}
        self._items: dict[str, dict[str, object]] = {}

    def _get_unlocked(self, session_id: str) -> GoalSession | None:
        now = self._clock()
        item = self._items.get(session_id)
        if item is None:
            return None
        if float(item["expires_at"]) > now:
            item["expires_at"] = now + self.ttl_seconds
            return item["session"]  # type: ignore[return-value]
        # expired -> forget
        del self._items[session_id]
        return None

    def get(self, session_id: str) -> GoalSession | None:
        with self._lock:
            return self._get_unlocked(str(session_id))

    def get_or_create(self, session_id: str) -> GoalSession:
        sid = str(session_id)
        with self._lock:
            session = self._get_unlocked(sid)
            if session is None:
                session = GoalSession(sid)
                self._items[sid] = {"session": session, "expires_at": self._clock() + self.ttl_seconds}
            return session

    def drop(self, session_id: str) -> bool:
        with self._lock:
            return self._items.pop(str(session_id), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def sweep_expired(self) -> int:
        """
        Delete expired sessions. Returns how many entries were removed.
        """
        now = self._clock()
        removed = 0
        with self._lock:
            expired = [k for k, v in self._items.items() if float(v["expires_at"]) <= now]
            for k in expired:
                del self._items[k]
                removed += 1
        return removed
