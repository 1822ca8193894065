"""In-process session state: operator reply targets and catalog browsing sessions.

Every operation here is synchronous. Engines must read, decide and write a
session without awaiting in between; that is what keeps concurrent webhook
handlers from interleaving inside a single session update.
"""

import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Hashable, Optional, Protocol, TypeVar

from support_bot.logging_config import get_logger
from support_bot.services.state_machine import BrowsingSession

logger = get_logger("session_registry")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


class SessionStore(Protocol[K, V]):
    def get(self, key: K) -> Optional[V]: ...

    def set(self, key: K, value: V) -> None: ...

    def delete(self, key: K) -> None: ...

    def pop(self, key: K) -> Optional[V]: ...

    def __len__(self) -> int: ...


class InMemorySessionStore(Generic[K, V]):
    """Dict-backed store with optional TTL and LRU size bound.

    ttl_seconds <= 0 disables expiry, max_entries <= 0 disables the bound.
    Reads refresh both recency and expiry.
    """

    def __init__(
        self,
        max_entries: int = 0,
        ttl_seconds: float = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: "OrderedDict[K, tuple[float, V]]" = OrderedDict()

    def _expired(self, stamp: float) -> bool:
        return self.ttl_seconds > 0 and self._clock() - stamp > self.ttl_seconds

    def _purge_expired(self) -> None:
        if self.ttl_seconds <= 0:
            return
        # oldest entries sit at the front
        while self._data:
            key, (stamp, _) = next(iter(self._data.items()))
            if not self._expired(stamp):
                break
            del self._data[key]

    def get(self, key: K) -> Optional[V]:
        entry = self._data.get(key)
        if entry is None:
            return None
        stamp, value = entry
        if self._expired(stamp):
            del self._data[key]
            return None
        self._data[key] = (self._clock(), value)
        self._data.move_to_end(key)
        return value

    def set(self, key: K, value: V) -> None:
        self._data[key] = (self._clock(), value)
        self._data.move_to_end(key)
        self._purge_expired()
        if self.max_entries > 0:
            while len(self._data) > self.max_entries:
                evicted, _ = self._data.popitem(last=False)
                logger.debug(f"Evicted session {evicted}")

    def delete(self, key: K) -> None:
        self._data.pop(key, None)

    def pop(self, key: K) -> Optional[V]:
        entry = self._data.pop(key, _MISSING)
        if entry is _MISSING:
            return None
        stamp, value = entry
        if self._expired(stamp):
            return None
        return value

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._data)


class SessionRegistry:
    """Owns both session maps. Engines go through this and never keep copies across calls."""

    def __init__(
        self,
        pending_replies: Optional[SessionStore[int, str]] = None,
        browsing_sessions: Optional[SessionStore[int, BrowsingSession]] = None,
    ):
        self._pending: SessionStore[int, str] = pending_replies or InMemorySessionStore()
        self._browsing: SessionStore[int, BrowsingSession] = browsing_sessions or InMemorySessionStore()

    def get_pending_reply(self, operator_id: int) -> Optional[str]:
        return self._pending.get(operator_id)

    def set_pending_reply(self, operator_id: int, ticket_handle: str) -> None:
        self._pending.set(operator_id, ticket_handle)

    def clear_pending_reply(self, operator_id: int) -> None:
        self._pending.delete(operator_id)

    def pop_pending_reply(self, operator_id: int) -> Optional[str]:
        """Read and clear in one step."""
        return self._pending.pop(operator_id)

    def restore_pending_reply(self, operator_id: int, ticket_handle: str) -> bool:
        """Put a claimed target back unless the operator picked a new one meanwhile."""
        if self._pending.get(operator_id) is not None:
            return False
        self._pending.set(operator_id, ticket_handle)
        return True

    def get_browsing_session(self, user_id: int) -> Optional[BrowsingSession]:
        return self._browsing.get(user_id)

    def set_browsing_session(self, user_id: int, session: BrowsingSession) -> None:
        self._browsing.set(user_id, session)

    def stats(self) -> dict[str, Any]:
        return {"pending_replies": len(self._pending), "browsing_sessions": len(self._browsing)}
