import asyncio
import threading
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, Iterator, List, Optional, Tuple

import pytz

from fields import FieldId
from logger import LOGGER
from schemas.state import SessionState, Stage
from schemas.station import GasStation


# =========================
# 🔹 PER-USER LOCKS
# =========================

@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class UserLockRegistry:
    """
    One asyncio.Lock per user identity.

    Events for the same user are serialized; different users never wait on
    each other. `holders` counts both the owner and the waiters so a lock is
    never dropped while somebody still queues on it.
    """

    def __init__(self):
        self._entries: Dict[int, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, user_id: int) -> AsyncIterator[None]:
        entry = self._entries.get(user_id)
        if entry is None:
            entry = self._entries[user_id] = _LockEntry()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1

    def is_busy(self, user_id: int) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and entry.holders > 0

    def discard(self, user_id: int) -> None:
        entry = self._entries.get(user_id)
        if entry is not None and entry.holders == 0:
            del self._entries[user_id]

    def __len__(self) -> int:
        return len(self._entries)


# =========================
# 🔹 SESSION STORE
# =========================

@dataclass
class _SessionEntry:
    state: SessionState
    touched_at: float
    last_active: datetime


class SessionStore:
    """
    In-memory, per-user session table with:
    - lazy creation on first access (stage=Message, everything else empty)
    - least-recently-used eviction above `max_sessions`
    - optional sliding idle TTL
    Sessions reported busy by `is_busy` are never evicted.
    """

    def __init__(
        self,
        max_sessions: int = 10000,
        idle_ttl_seconds: Optional[float] = None,
        is_busy: Optional[Callable[[int], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_sessions = max_sessions
        self.idle_ttl_seconds = idle_ttl_seconds
        self._is_busy = is_busy or (lambda user_id: False)
        self._clock = clock
        self._lock = threading.Lock()
        self._items: "OrderedDict[int, _SessionEntry]" = OrderedDict()
        self._evict_listeners: List[Callable[[int], None]] = []

    def add_evict_listener(self, listener: Callable[[int], None]) -> None:
        self._evict_listeners.append(listener)

    # --- lookup ---

    def get_or_create(self, user_id: int) -> SessionState:
        evicted: List[int] = []
        with self._lock:
            entry = self._items.get(user_id)
            if entry is None:
                entry = _SessionEntry(
                    state=SessionState(),
                    touched_at=self._clock(),
                    last_active=datetime.now(pytz.utc),
                )
                self._items[user_id] = entry
                LOGGER.debug("[SESSION] New session for user %s", user_id)
                evicted = self._evict_unlocked(keep=user_id)
            else:
                self._touch_unlocked(user_id, entry)
            state = entry.state

        for evicted_id in evicted:
            self._notify_evicted(evicted_id)
        return state

    def get(self, user_id: int) -> Optional[SessionState]:
        with self._lock:
            entry = self._items.get(user_id)
            return entry.state if entry else None

    def snapshot(self, user_id: int) -> SessionState:
        """Shallow copy; datasets are immutable tuples so sharing them is safe."""
        return self.get_or_create(user_id).model_copy()

    def replace(self, user_id: int, state: SessionState) -> None:
        with self._lock:
            entry = self._items.get(user_id)
            if entry is None:
                self._items[user_id] = _SessionEntry(state, self._clock(), datetime.now(pytz.utc))
            else:
                entry.state = state

    def remove(self, user_id: int) -> bool:
        with self._lock:
            removed = self._items.pop(user_id, None) is not None
        if removed:
            self._notify_evicted(user_id)
        return removed

    def last_active(self, user_id: int) -> Optional[datetime]:
        with self._lock:
            entry = self._items.get(user_id)
            return entry.last_active if entry else None

    def items(self) -> Iterator[Tuple[int, SessionState]]:
        with self._lock:
            pairs = [(user_id, entry.state) for user_id, entry in self._items.items()]
        return iter(pairs)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._items

    # --- upserts ---

    def set_stage(self, user_id: int, stage: Stage) -> None:
        self.get_or_create(user_id).stage = stage

    def set_dataset(self, user_id: int, dataset: Optional[Tuple[GasStation, ...]]) -> None:
        self.get_or_create(user_id).dataset = dataset

    def set_last_result(self, user_id: int, result: Optional[Tuple[GasStation, ...]]) -> None:
        self.get_or_create(user_id).last_result = result

    def set_filter_fields(self, user_id: int, field1: Optional[FieldId], field2: Optional[FieldId]) -> None:
        state = self.get_or_create(user_id)
        state.filter_field1 = field1
        state.filter_field2 = field2

    def set_last_sort_field(self, user_id: int, field_id: Optional[FieldId]) -> None:
        self.get_or_create(user_id).last_sort_field = field_id

    def clear_selections(self, user_id: int) -> None:
        self.get_or_create(user_id).clear_selections()

    # --- eviction ---

    def evict_expired(self) -> List[int]:
        with self._lock:
            evicted = self._evict_unlocked(keep=None)
        for user_id in evicted:
            self._notify_evicted(user_id)
        return evicted

    def _touch_unlocked(self, user_id: int, entry: _SessionEntry) -> None:
        entry.touched_at = self._clock()
        entry.last_active = datetime.now(pytz.utc)
        self._items.move_to_end(user_id)

    def _evict_unlocked(self, keep: Optional[int]) -> List[int]:
        evicted: List[int] = []

        if self.idle_ttl_seconds is not None:
            deadline = self._clock() - self.idle_ttl_seconds
            for user_id, entry in list(self._items.items()):
                if user_id != keep and entry.touched_at <= deadline and not self._is_busy(user_id):
                    del self._items[user_id]
                    evicted.append(user_id)

        # oldest first
        for user_id in list(self._items.keys()):
            if len(self._items) <= self.max_sessions:
                break
            if user_id == keep or self._is_busy(user_id):
                continue
            del self._items[user_id]
            evicted.append(user_id)

        return evicted

    def _notify_evicted(self, user_id: int) -> None:
        LOGGER.info("[SESSION] Evicted session for user %s", user_id)
        for listener in self._evict_listeners:
            listener(user_id)
