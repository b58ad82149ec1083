"""Thread-safe holder for the most recent reading."""

import logging
import threading
from typing import Optional

from vitals_engine.models import Reading

logger = logging.getLogger(__name__)


class ReadingCache:
    """Latest-reading cache with an explicit collecting/paused flag.

    While paused, offered readings are ignored and the cached reading stays
    frozen until resume() is called. Pausing is never time-based.
    """

    def __init__(self) -> None:
        self._latest: Optional[Reading] = None
        self._collecting = True
        self._lock = threading.Lock()

    def offer(self, reading: Reading) -> bool:
        """Store a copy of reading as latest if collecting (thread-safe).

        Args:
            reading: Newly parsed reading

        Returns:
            True if the cache was updated, False if paused
        """
        with self._lock:
            if not self._collecting:
                logger.debug("Reading received but collecting is paused")
                return False
            self._latest = reading.copy()
            return True

    def latest(self) -> Optional[Reading]:
        """Get a copy of the cached reading, or None if nothing cached yet."""
        with self._lock:
            return self._latest.copy() if self._latest else None

    def pause(self) -> None:
        """Stop updating the cached reading."""
        with self._lock:
            self._collecting = False
        logger.info("Collecting paused (latest will no longer update)")

    def resume(self) -> None:
        """Resume updating the cached reading."""
        with self._lock:
            self._collecting = True
        logger.info("Collecting resumed")

    def clear(self) -> None:
        """Drop the cached reading (collecting flag unchanged)."""
        with self._lock:
            self._latest = None
        logger.debug("Reading cache cleared")

    @property
    def collecting(self) -> bool:
        """True while offered readings update the cache."""
        with self._lock:
            return self._collecting
