"""
CSRF state stores for the OAuth authorization flow.

A state value is issued when the user is sent to Atlassian and must come
back exactly once, within the TTL. ``InMemoryStateStore`` only works for a
single process; ``SqlStateStore`` keeps states in the database so every
instance behind a load balancer sees the same set.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict

from sqlalchemy import delete

from jira_mirror.database.connection import DatabaseConnection
from jira_mirror.database.models import OAuthState
from jira_mirror.utils.helpers import ensure_utc, utc_now
from jira_mirror.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_STATE_TTL = 600  # 10 minutes


class StateStore(ABC):
    """Single-use, expiring registry of issued CSRF states."""

    def __init__(self, ttl_seconds: int = DEFAULT_STATE_TTL, clock: Callable[[], datetime] = utc_now):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    @abstractmethod
    def put(self, state: str) -> None:
        """Record a freshly issued state."""

    @abstractmethod
    def consume(self, state: str) -> bool:
        """
        Remove a state and report whether it was valid.

        Returns True only if the state was issued, not yet used and not
        older than the TTL. The state is gone afterwards either way.
        """

    def _is_fresh(self, created_at: datetime) -> bool:
        return ensure_utc(created_at) >= self._clock() - self.ttl


class InMemoryStateStore(StateStore):
    """Process-local state registry."""

    def __init__(self, ttl_seconds: int = DEFAULT_STATE_TTL, clock: Callable[[], datetime] = utc_now):
        super().__init__(ttl_seconds, clock)
        self._states: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def put(self, state: str) -> None:
        with self._lock:
            self._states[state] = self._clock()
            self._prune()

    def consume(self, state: str) -> bool:
        with self._lock:
            created_at = self._states.pop(state, None)
        return created_at is not None and self._is_fresh(created_at)

    def _prune(self) -> None:
        cutoff = self._clock() - self.ttl
        for key in [k for k, created in self._states.items() if created < cutoff]:
            del self._states[key]

    def __len__(self) -> int:
        return len(self._states)


class SqlStateStore(StateStore):
    """State registry shared through the database."""

    def __init__(
        self,
        db: DatabaseConnection,
        ttl_seconds: int = DEFAULT_STATE_TTL,
        clock: Callable[[], datetime] = utc_now
    ):
        super().__init__(ttl_seconds, clock)
        self.db = db

    def put(self, state: str) -> None:
        now = self._clock()
        with self.db.session_scope() as session:
            # Expired rows are purged on write
            session.execute(delete(OAuthState).where(OAuthState.created_at < now - self.ttl))
            session.merge(OAuthState(state=state, created_at=now))

    def consume(self, state: str) -> bool:
        cutoff = self._clock() - self.ttl
        with self.db.session_scope() as session:
            # The conditional delete is the check; concurrent consumers race on it
            result = session.execute(
                delete(OAuthState).where(OAuthState.state == state, OAuthState.created_at >= cutoff)
            )
            if result.rowcount == 1:
                return True

            # Expired states are removed as well
            session.execute(delete(OAuthState).where(OAuthState.state == state))
        return False
