"""
Process-wide TTL cache for derived per-owner aggregates (detected
subscriptions, summaries). Injected into services rather than imported as a
singleton so tests can use their own instance.
"""
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = float(os.getenv("SUBSCRIPTION_DETECTION_CACHE_TTL_SECONDS", "300"))

_MISSING = object()


class TTLCache:
    """
    Thread-safe key/value cache where every entry expires after a TTL.

    Keys are strings so callers can invalidate a whole owner with
    invalidate_prefix("detected_subscriptions:<user_id>:").
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return default
            return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def invalidate(self, key: str) -> bool:
        """Drop a single key. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, _MISSING) is not _MISSING

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            stale = [k for k in self._entries if isinstance(k, str) and k.startswith(prefix)]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(f"[CACHE] Invalidated {len(stale)} entries with prefix {prefix}")
        return len(stale)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for expires_at, _ in self._entries.values() if expires_at > now)


def detection_cache_key(user_id: str, window_months: int) -> str:
    return f"detected_subscriptions:{user_id}:{window_months}"


def owner_cache_prefix(user_id: str) -> str:
    return f"detected_subscriptions:{user_id}:"


def summary_cache_key(user_id: str) -> str:
    return f"subscription_summary:{user_id}"


_default_cache: Optional[TTLCache] = None
_default_cache_lock = threading.Lock()


def get_default_cache() -> TTLCache:
    """Lazily created process-wide cache used by the HTTP layer."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = TTLCache()
        return _default_cache
