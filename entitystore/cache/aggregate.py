"""
Debounced snapshots of every present entity in a store.
"""

import asyncio
import logging
from typing import Generic, List, Optional, TypeVar

from entitystore.cache.bus import ChangeBus
from entitystore.cache.cell import KeyedValueStore
from entitystore.cache.streams import EntityStream, Observer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AggregateViewBuilder(Generic[T]):
    """
    Builds the stream behind ``get_all()``.

    Each subscription emits the current snapshot immediately, then one
    recomputed snapshot per burst of change signals: every signal restarts a
    trailing timer of ``debounce_time`` seconds and only its expiry triggers
    a recomputation.
    """

    def __init__(self, values: KeyedValueStore[T], bus: ChangeBus, debounce_time: float):
        self._values = values
        self._bus = bus
        self._debounce_time = max(0.0, float(debounce_time))

    def snapshot(self) -> List[T]:
        """All currently present entities, in no particular order."""
        return self._values.present_values()

    def stream(self) -> EntityStream[List[T]]:
        def subscribe_fn(observer: Observer[List[T]]):
            pending: Optional[asyncio.TimerHandle] = None

            def cancel_pending() -> None:
                nonlocal pending
                if pending is not None:
                    pending.cancel()
                    pending = None

            def recompute() -> None:
                nonlocal pending
                pending = None
                snapshot = self.snapshot()
                logger.debug(f"Emitting aggregate snapshot of {len(snapshot)} entities")
                observer.on_next(snapshot)

            def on_signal(_: None) -> None:
                nonlocal pending
                cancel_pending()
                loop = asyncio.get_running_loop()
                pending = loop.call_later(self._debounce_time, recompute)

            def on_closed() -> None:
                cancel_pending()
                observer.on_complete()

            observer.on_next(self.snapshot())
            signals = self._bus.as_stream().subscribe(on_signal, observer.on_error, on_closed)

            def teardown() -> None:
                signals.unsubscribe()
                cancel_pending()

            return teardown

        return EntityStream(subscribe_fn)
