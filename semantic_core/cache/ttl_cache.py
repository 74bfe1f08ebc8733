"""
Time-to-live cache holding a single lazily refreshed value.
"""

import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class CacheEntry:
    """Immutable snapshot of a cached value and the time it was loaded."""

    __slots__ = ("value", "loaded_at")

    def __init__(self, value: Any, loaded_at: float):
        self.value = value
        self.loaded_at = loaded_at


class TTLCache:
    """
    Cache for one value that is rebuilt on demand once it is older than ``ttl_seconds``.

    The loader runs to completion before the entry reference is swapped, so readers
    never see a half-built value. Concurrent callers racing past an expired entry may
    each run the loader; the last one to finish wins.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.name = name
        self._entry: Optional[CacheEntry] = None

    @property
    def is_empty(self) -> bool:
        return self._entry is None

    @property
    def is_stale(self) -> bool:
        entry = self._entry
        if entry is None:
            return True
        return (self.clock() - entry.loaded_at) >= self.ttl_seconds

    def peek(self) -> Any:
        """Return the cached value without refreshing, or None."""
        entry = self._entry
        return entry.value if entry is not None else None

    def get_or_refresh(self, loader: Callable[[], Any]) -> Any:
        """
        Return the cached value, running ``loader`` first if the entry is empty or stale.

        Args:
            loader: Callable producing a fresh value

        Returns:
            The cached or freshly loaded value

        Raises:
            Exception: whatever the loader raised, but only when there is no previous
                value to fall back on
        """
        entry = self._entry
        if entry is not None and not self.is_stale:
            return entry.value

        try:
            value = loader()
        except Exception as e:
            if entry is not None:
                logger.warning(f"Refresh of {self.name} failed, serving stale value: {e}")
                return entry.value
            raise

        self._entry = CacheEntry(value, self.clock())
        logger.debug(f"Refreshed {self.name}")
        return value

    def invalidate(self):
        """Drop the cached value so the next access reloads it."""
        self._entry = None
        logger.debug(f"Invalidated {self.name}")
