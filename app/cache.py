import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Hashable, Optional

from app.errors import RateLimitError
from app.schemas import FeedResponse

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


class StripedLocks:
    """Fixed pool of locks; a key always maps to the same lock."""

    def __init__(self, stripes: int = LOCK_STRIPES):
        self._locks = [threading.Lock() for _ in range(stripes)]

    def __call__(self, key: Hashable) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]


# ---------------------------------------------------------------------------
# Feed cache
# ---------------------------------------------------------------------------

@dataclass
class CacheEntry:
    user_id: str
    response: FeedResponse
    request_key: Hashable
    computed_at: float
    ttl: float

    def is_live(self, now: float) -> bool:
        return now < self.computed_at + self.ttl


class FeedCache:
    """
    At most one live feed per user, bounded by capacity (least recently used evicted first).
    Invalidation always drops the whole entry for the user.

    A computation brackets itself with begin()/finish(). invalidate() bumps the user's
    generation, and put() with a generation taken before the bump is dropped.
    """

    def __init__(self, ttl_seconds: float = 900, capacity: int = 10_000, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.capacity = capacity
        self.clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._user_locks = StripedLocks()
        self._index_lock = threading.Lock()  # guards the entry and generation maps
        self._generations: dict[str, list] = {}  # user_id -> [generation, computations in flight]

    def get(self, user_id: str, request_key: Hashable = None) -> Optional[FeedResponse]:
        with self._user_locks(user_id):
            with self._index_lock:
                entry = self._entries.get(user_id)
            if entry is None:
                return None
            if not entry.is_live(self.clock()) or entry.request_key != request_key:
                with self._index_lock:
                    self._entries.pop(user_id, None)
                return None
            with self._index_lock:
                if user_id in self._entries:
                    self._entries.move_to_end(user_id)
            return entry.response

    def begin(self, user_id: str) -> int:
        """Register a feed computation for the user; returns the generation it starts from."""
        with self._user_locks(user_id):
            with self._index_lock:
                state = self._generations.setdefault(user_id, [0, 0])
                state[1] += 1
                return state[0]

    def finish(self, user_id: str):
        with self._user_locks(user_id):
            with self._index_lock:
                state = self._generations.get(user_id)
                if state is None:
                    return
                state[1] -= 1
                if state[1] <= 0:
                    del self._generations[user_id]

    def put(
        self,
        user_id: str,
        response: FeedResponse,
        ttl: Optional[float] = None,
        request_key: Hashable = None,
        generation: Optional[int] = None,
    ) -> bool:
        entry = CacheEntry(
            user_id=user_id,
            response=response,
            request_key=request_key,
            computed_at=self.clock(),
            ttl=self.ttl_seconds if ttl is None else ttl,
        )
        with self._user_locks(user_id):
            with self._index_lock:
                if generation is not None:
                    state = self._generations.get(user_id)
                    if state is None or state[0] != generation:
                        logger.info(f"[cache] Dropped stale feed for user {user_id}, invalidated while computing")
                        return False
                self._entries[user_id] = entry
                self._entries.move_to_end(user_id)
                while len(self._entries) > self.capacity:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug(f"[cache] Evicted feed for user {evicted}")
        return True

    def invalidate(self, user_id: str) -> bool:
        with self._user_locks(user_id):
            with self._index_lock:
                removed = self._entries.pop(user_id, None) is not None
                state = self._generations.get(user_id)
                if state is not None:
                    state[0] += 1
        logger.info(f"[cache] Invalidated feed for user {user_id} (had_entry={removed})")
        return removed

    def clear(self):
        with self._index_lock:
            self._entries.clear()

    def __len__(self):
        with self._index_lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

class RateLimiter:
    """Fixed-window request counter per key; a window expires `window_seconds` after its first hit."""

    PURGE_EVERY = 1000

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._windows: dict[str, list] = {}  # key -> [count, reset_at]
        self._key_locks = StripedLocks()
        self._index_lock = threading.Lock()
        self._calls = 0

    def check(self, key: str, max_requests: int, window_seconds: float):
        """Count one request for `key`; raise RateLimitError once the window's budget is spent."""
        now = self.clock()
        with self._key_locks(key):
            with self._index_lock:
                window = self._windows.get(key)
                if window is None or now >= window[1]:
                    window = [0, now + window_seconds]
                    self._windows[key] = window
            if window[0] >= max_requests:
                retry_after = max(1, math.ceil(window[1] - now))
                logger.warning(f"[rate-limit] {key} exceeded {max_requests}/{window_seconds}s, retry in {retry_after}s")
                raise RateLimitError(
                    f"Rate limit exceeded. Maximum {max_requests} requests per {int(window_seconds)} seconds.",
                    retry_after=retry_after,
                )
            window[0] += 1

        self._maybe_purge(now)

    def _maybe_purge(self, now: float):
        with self._index_lock:
            self._calls += 1
            if self._calls % self.PURGE_EVERY:
                return
            expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
            for key in expired:
                del self._windows[key]

    def reset(self):
        with self._index_lock:
            self._windows.clear()
