"""Session registry — who is connected, who they are, what they watch.

Learn: One SessionRegistry instance is built in the app lifespan and handed
to every WebSocket connection and to the relay. It is pure in-memory
bookkeeping (no I/O), guarded by a single lock so that:

- Every mutation is atomic. A disconnect removes the session from the
  active set, the user index and every event/campus index in one step,
  so a concurrent lookup sees the session everywhere or nowhere.
- Every read hands back a copy. Callers can iterate the result while
  other connections keep subscribing and disconnecting.

Operations on unknown session IDs are no-ops, never errors.
"""

import threading
from collections import defaultdict
from typing import Optional

import structlog

logger = structlog.get_logger()


def _discard(index: dict, key, member) -> None:
    """Remove member from index[key], dropping the key once it is empty."""
    members = index.get(key)
    if members is None:
        return
    members.discard(member)
    if not members:
        del index[key]


class SessionRegistry:
    """Concurrency-safe index of live sessions and their subscriptions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[str] = set()
        self._session_user: dict[str, int] = {}
        self._user_sessions: dict[int, set[str]] = defaultdict(set)
        self._session_events: dict[str, set[int]] = defaultdict(set)
        self._event_sessions: dict[int, set[str]] = defaultdict(set)
        self._session_campuses: dict[str, set[int]] = defaultdict(set)
        self._campus_sessions: dict[int, set[str]] = defaultdict(set)

    # ─── Lifecycle ─────────────────────────────────────────

    def register_session(self, session_id: str) -> None:
        """Mark a connection as active. Idempotent."""
        with self._lock:
            self._active.add(session_id)
            total = len(self._active)
        logger.info("registry.session_registered", session_id=session_id, active_sessions=total)

    def register_user_session(self, session_id: str, user_id: int) -> None:
        """Register the session and link it to an authenticated user.

        A user may hold several sessions (tabs, devices). Re-linking a
        session to a different user moves it out of the old user's set.
        """
        self.register_session(session_id)
        with self._lock:
            previous = self._session_user.get(session_id)
            if previous is not None and previous != user_id:
                _discard(self._user_sessions, previous, session_id)
            self._session_user[session_id] = user_id
            self._user_sessions[user_id].add(session_id)
        logger.info("registry.user_linked", session_id=session_id, user_id=user_id)

    def unregister_session(self, session_id: str) -> None:
        """Drop the session from every index. No-op for unknown sessions."""
        with self._lock:
            self._active.discard(session_id)

            user_id = self._session_user.pop(session_id, None)
            if user_id is not None:
                _discard(self._user_sessions, user_id, session_id)

            for event_id in self._session_events.pop(session_id, ()):
                _discard(self._event_sessions, event_id, session_id)
            for campus_id in self._session_campuses.pop(session_id, ()):
                _discard(self._campus_sessions, campus_id, session_id)

            remaining = len(self._active)
        logger.info("registry.session_unregistered", session_id=session_id, remaining_sessions=remaining)

    # ─── Subscriptions ─────────────────────────────────────
    # Subscribing does not require a prior register_session: clients may
    # send subscribe frames before the connect bookkeeping lands.

    def subscribe_to_event(self, session_id: str, event_id: int) -> None:
        with self._lock:
            self._session_events[session_id].add(event_id)
            self._event_sessions[event_id].add(session_id)
        logger.debug("registry.event_subscribed", session_id=session_id, event_id=event_id)

    def unsubscribe_from_event(self, session_id: str, event_id: int) -> None:
        with self._lock:
            _discard(self._session_events, session_id, event_id)
            _discard(self._event_sessions, event_id, session_id)
        logger.debug("registry.event_unsubscribed", session_id=session_id, event_id=event_id)

    def subscribe_to_campus(self, session_id: str, campus_id: int) -> None:
        with self._lock:
            self._session_campuses[session_id].add(campus_id)
            self._campus_sessions[campus_id].add(session_id)
        logger.debug("registry.campus_subscribed", session_id=session_id, campus_id=campus_id)

    def unsubscribe_from_campus(self, session_id: str, campus_id: int) -> None:
        with self._lock:
            _discard(self._session_campuses, session_id, campus_id)
            _discard(self._campus_sessions, campus_id, session_id)
        logger.debug("registry.campus_unsubscribed", session_id=session_id, campus_id=campus_id)

    # ─── Read-only accessors (all return copies) ───────────

    def get_sessions_subscribed_to_event(self, event_id: int) -> set[str]:
        with self._lock:
            return set(self._event_sessions.get(event_id, ()))

    def get_sessions_subscribed_to_campus(self, campus_id: int) -> set[str]:
        with self._lock:
            return set(self._campus_sessions.get(campus_id, ()))

    def get_event_subscriptions(self, session_id: str) -> set[int]:
        with self._lock:
            return set(self._session_events.get(session_id, ()))

    def get_campus_subscriptions(self, session_id: str) -> set[int]:
        with self._lock:
            return set(self._session_campuses.get(session_id, ()))

    def get_sessions_for_user(self, user_id: int) -> set[str]:
        with self._lock:
            return set(self._user_sessions.get(user_id, ()))

    def get_user_id_for_session(self, session_id: str) -> Optional[int]:
        with self._lock:
            return self._session_user.get(session_id)

    def get_active_sessions(self) -> set[str]:
        with self._lock:
            return set(self._active)

    def is_session_active(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._active

    def get_active_session_count(self) -> int:
        with self._lock:
            return len(self._active)

    def get_active_user_count(self) -> int:
        with self._lock:
            return len(self._user_sessions)
