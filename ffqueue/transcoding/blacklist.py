"""
Time-windowed blacklist of hardware encoders that recently failed.

A hardware encoder failing once (missing driver, exhausted sessions) should
not be retried for the rest of a batch, but should not stay disabled forever
either. Entries expire after ``ttl_seconds``.
"""

import asyncio
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from .constants import BLACKLIST_CLEANUP_INTERVAL, BLACKLIST_TTL_SECONDS

logger = logging.getLogger(__name__)


class HardwareAccelBlacklist:
    """Thread-safe TTL cache of codec name -> insertion time."""

    def __init__(
        self,
        ttl_seconds: float = BLACKLIST_TTL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _expired(self, timestamp: float, now: float) -> bool:
        return now - timestamp > self.ttl_seconds

    def is_blacklisted(self, codec: str) -> bool:
        """Check a codec, purging its entry if it has expired."""
        with self._lock:
            timestamp = self._entries.get(codec)
            if timestamp is None:
                return False
            if self._expired(timestamp, self._clock()):
                del self._entries[codec]
                logger.debug(f"[Blacklist] Entry for {codec} expired")
                return False
            return True

    def add_to_blacklist(self, codec: str) -> None:
        with self._lock:
            self._entries[codec] = self._clock()
        logger.info(f"[Blacklist] Added {codec} for {self.ttl_seconds:.0f}s")

    def remove_from_blacklist(self, codec: str) -> None:
        with self._lock:
            self._entries.pop(codec, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [c for c, ts in self._entries.items() if self._expired(ts, now)]
            for codec in expired:
                del self._entries[codec]
        if expired:
            logger.debug(f"[Blacklist] Purged {len(expired)} expired entr{'y' if len(expired) == 1 else 'ies'}")
        return len(expired)

    def get_blacklist_status(self) -> List[Dict[str, object]]:
        """Snapshot of current entries with their remaining time."""
        with self._lock:
            now = self._clock()
            return [
                {
                    "codec": codec,
                    "remaining_ms": max(0, int((self.ttl_seconds - (now - ts)) * 1000)),
                }
                for codec, ts in self._entries.items()
            ]

    async def run_cleanup_loop(self, interval: float = BLACKLIST_CLEANUP_INTERVAL) -> None:
        """Periodically purge expired entries until cancelled."""
        while True:
            try:
                await asyncio.sleep(interval)
                self.cleanup_expired()
            except asyncio.CancelledError:
                break
