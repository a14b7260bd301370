"""
Per-key eviction timers on the running event loop.
"""

import asyncio
import logging
from typing import Callable, Dict, Tuple

logger = logging.getLogger(__name__)


class EvictionScheduler:
    """
    Owns at most one cancellable delayed action per key.

    Every timer carries a token; a firing whose token is no longer the
    registered one is ignored, so a timer that was replaced or cancelled
    can never evict.
    """

    def __init__(self) -> None:
        self._timers: Dict[str, Tuple[object, asyncio.TimerHandle]] = {}

    def schedule(self, key: str, delay: float, on_expire: Callable[[str], None]) -> None:
        """Cancel any timer for the key and arm a new one-shot timer."""
        self.cancel(key)
        loop = asyncio.get_running_loop()
        token = object()
        handle = loop.call_later(max(0.0, float(delay)), self._fire, key, token, on_expire)
        self._timers[key] = (token, handle)

    def _fire(self, key: str, token: object, on_expire: Callable[[str], None]) -> None:
        entry = self._timers.get(key)
        if entry is None or entry[0] is not token:
            return
        del self._timers[key]
        logger.debug(f"Cache time elapsed for key '{key}'")
        on_expire(key)

    def cancel(self, key: str) -> bool:
        """Cancel and discard the timer for a key, if any."""
        entry = self._timers.pop(key, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    def cancel_all(self) -> int:
        timers, self._timers = self._timers, {}
        for _, handle in timers.values():
            handle.cancel()
        return len(timers)

    def pending(self, key: str) -> bool:
        return key in self._timers

    def __len__(self) -> int:
        return len(self._timers)
