# ===== IMPORTS & DEPENDENCIES =====
import logging
import re
import time
from typing import Any, Callable, Dict, Optional, Tuple

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# ===== CORE BUSINESS LOGIC =====
class TTLCache:
    """
    In-process key/value store where every entry carries its own expiry.

    One instance is created at startup and handed to every client that caches.
    Entries leave only through expiry or `invalidate`/`clear`; there is no size
    bound. Not shared between processes.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        """Returns the cached value, or None if missing or expired (expired entries are evicted)."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if self._clock() > expires_at:
            del self._entries[key]
            logger.debug(f"[{self.__class__.__name__}] Entry expired: {key}")
            return None
        return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Stores `value` for `ttl` seconds, replacing any previous entry."""
        self._entries[key] = (value, self._clock() + ttl)

    def invalidate(self, pattern: str) -> int:
        """Removes every key matching the regular expression `pattern`. Returns how many were removed."""
        regex = re.compile(pattern)
        doomed = [key for key in self._entries if regex.search(key)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.info(f"[{self.__class__.__name__}] Invalidated {len(doomed)} entries matching '{pattern}'")
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
