"""
Store-wide change notifications.
"""

import logging
from typing import List

from entitystore.cache.streams import EntityStream, Observer

logger = logging.getLogger(__name__)


class ChangeBus:
    """
    Broadcast channel signalled on every structural change to a store.

    Signals carry no payload and are not replayed: subscribers only see
    signals posted after they subscribed. Closing completes every subscriber
    and makes later posts no-ops.
    """

    def __init__(self) -> None:
        self._observers: List[Observer] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def post(self) -> None:
        if self._closed:
            return
        for observer in list(self._observers):
            observer.on_next(None)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        observers, self._observers = self._observers, []
        for observer in observers:
            observer.on_complete()
        logger.debug("Change bus closed")

    def as_stream(self) -> EntityStream[None]:
        def subscribe_fn(observer: Observer):
            if self._closed:
                observer.on_complete()
                return None
            self._observers.append(observer)

            def remove() -> None:
                if observer in self._observers:
                    self._observers.remove(observer)

            return remove

        return EntityStream(subscribe_fn)
