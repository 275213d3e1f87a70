"""
Single-flight coordinator: concurrent callers asking for the same key share
one computation instead of each running it.
"""
import logging
import os
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, Tuple

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = float(os.getenv("SINGLE_FLIGHT_GRACE_SECONDS", "2"))


class SingleFlight:
    """
    Deduplicates in-flight work by key.

    The first caller for a key runs the function; callers arriving while it
    runs, or within `grace_seconds` after it finished, receive the same result
    (or the same exception). After the grace period the entry is evicted and
    the next caller triggers a fresh computation.
    """

    def __init__(
        self,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.grace_seconds = grace_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (future, completed_at or None while running)
        self._calls: Dict[str, Tuple[Future, Any]] = {}

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [
            key for key, (_, completed_at) in self._calls.items()
            if completed_at is not None and now - completed_at >= self.grace_seconds
        ]
        for key in expired:
            del self._calls[key]

    def do(self, key: str, fn: Callable[[], Any]) -> Any:
        with self._lock:
            self._evict_expired()
            entry = self._calls.get(key)
            if entry is not None:
                future = entry[0]
                leader = False
            else:
                future = Future()
                self._calls[key] = (future, None)
                leader = True

        if not leader:
            logger.debug(f"[SINGLE_FLIGHT] Joining in-flight computation for {key}")
            return future.result()

        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                if self._calls.get(key, (None,))[0] is future:
                    if self.grace_seconds <= 0:
                        del self._calls[key]
                    else:
                        self._calls[key] = (future, self._clock())

    def forget(self, key: str) -> None:
        """Drop a key so the next caller recomputes, e.g. after a mutation."""
        with self._lock:
            self._calls.pop(key, None)

    def forget_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._calls if k.startswith(prefix)]:
                del self._calls[key]

    def in_flight(self) -> int:
        with self._lock:
            return sum(1 for _, completed_at in self._calls.values() if completed_at is None)


_default_single_flight = SingleFlight()


def get_default_single_flight() -> SingleFlight:
    return _default_single_flight
