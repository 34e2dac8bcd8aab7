"""
In-memory fetch cache for FPL API responses.

Historical gameweek data (live scores and picks for a finished gameweek) never
changes, so those entries are kept for the lifetime of the cache. Everything
else expires after a TTL and is refetched on the next access.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300

# Paths addressing one specific gameweek
_LIVE_PATH = re.compile(r"^event/(\d+)/live$")
_PICKS_PATH = re.compile(r"^entry/\d+/event/(\d+)/picks$")


def normalize_path(path: str) -> str:
    """Strip surrounding slashes so 'entry/1/history/' and 'entry/1/history' share a key."""
    return path.strip().strip("/")


def is_permanent(path: str, current_gameweek: Optional[int]) -> bool:
    """
    Decide whether a response for path can be cached forever.

    Only live scores and picks of a gameweek strictly before the current one
    qualify. Without a known current gameweek nothing is permanent.
    """
    if current_gameweek is None:
        return False
    path = normalize_path(path)
    match = _LIVE_PATH.match(path) or _PICKS_PATH.match(path)
    if not match:
        return False
    return int(match.group(1)) < current_gameweek


@dataclass
class CacheEntry:
    payload: Any
    fetched_at: float
    permanent: bool = False


class FetchCache:
    """Path-keyed response cache shared by every fetch in a session."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def _is_valid(self, entry: CacheEntry) -> bool:
        return entry.permanent or (self._clock() - entry.fetched_at) < self.ttl

    def get(self, path: str) -> Optional[Any]:
        """Return the cached payload, or None if missing or expired."""
        entry = self._entries.get(normalize_path(path))
        if entry is None or not self._is_valid(entry):
            return None
        return entry.payload

    def put(self, path: str, payload: Any, permanent: bool = False) -> None:
        """
        Store payload for path.

        An existing permanent entry is never replaced by a non-permanent one.
        """
        key = normalize_path(path)
        existing = self._entries.get(key)
        if existing is not None and existing.permanent and not permanent:
            logger.debug("Keeping permanent cache entry", extra={"path": key})
            return
        self._entries[key] = CacheEntry(
            payload=payload,
            fetched_at=self._clock(),
            permanent=permanent
        )

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, path: str) -> bool:
        entry = self._entries.get(normalize_path(path))
        return entry is not None and self._is_valid(entry)

    def __len__(self) -> int:
        return len(self._entries)
