"""
In-memory moderation cache with a fixed time-to-live.
"""
import logging
import time
from typing import Callable, Dict, Optional

from core.entities import CacheEntry, ModerationScoreSet

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


class ModerationCache:
    """
    Read-through cache of moderation scores keyed by identity ID.

    Expired entries are treated as absent and overwritten on the next fetch;
    nothing is evicted proactively.
    """

    def __init__(
        self,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock_ms: Callable[[], int] = now_ms,
    ):
        self.ttl_ms = ttl_ms
        self._clock_ms = clock_ms
        self._entries: Dict[str, CacheEntry] = {}

        # Counters for monitoring
        self.hits = 0
        self.misses = 0

    def now(self) -> int:
        return self._clock_ms()

    def get(self, identity_id: str, now: Optional[int] = None) -> Optional[ModerationScoreSet]:
        """Return cached scores if present and younger than the TTL."""
        entry = self._entries.get(identity_id)
        now = self.now() if now is None else now

        if entry is None or now - entry.fetched_at_ms >= self.ttl_ms:
            self.misses += 1
            return None

        self.hits += 1
        return entry.result

    def put(self, identity_id: str, result: ModerationScoreSet, now: Optional[int] = None) -> None:
        """Store scores for an identity, replacing any previous entry."""
        fetched_at = self.now() if now is None else now
        self._entries[identity_id] = CacheEntry(result=result, fetched_at_ms=fetched_at)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity_id: str) -> bool:
        return identity_id in self._entries

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
