"""
Race-safe get-or-fetch for entity stores.

Checking a key and then writing it is not atomic against deletions coming
from timers or other callers, so every resolution re-reads the key's cell
after the write and starts over when the entry vanished in between.
Concurrent resolutions of the same absent key share a single producer call.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from entitystore.cache.base import ABSENT
from entitystore.cache.cell import Cell
from entitystore.cache.streams import EntityStream, Observer, Subscription, to_stream
from entitystore.exceptions import EmptyStreamError, GetOrSetRaceError

if TYPE_CHECKING:
    from entitystore.cache.memory import EntityStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

Producer = Callable[[], Any]


class _Flight:
    """One shared producer invocation for an absent key."""

    def __init__(self, coordinator: "GetOrSetCoordinator", key: str):
        self._coordinator = coordinator
        self._key = key
        self._waiters: List[Tuple[Callable[[], None], Callable[[BaseException], None]]] = []
        self._subscription: Optional[Subscription] = None
        self.finished = False

    def join(
        self,
        on_done: Callable[[], None],
        on_error: Callable[[BaseException], None],
    ) -> Callable[[], None]:
        """Wait for the flight; returns a callable that stops waiting."""
        waiter = (on_done, on_error)
        self._waiters.append(waiter)

        def leave() -> None:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

        return leave

    def start(self, producer: Producer, cache_time: Optional[float]) -> None:
        """Call the producer and store its first value; waiters are released after the write."""
        def write(value: Any) -> None:
            store = self._coordinator.store
            if not store.disposed:
                try:
                    store.set(value, cache_time)
                except Exception as e:
                    self._reject(e)
                    return
            self._resolve(value)

        try:
            source = to_stream(producer())
        except Exception as e:
            self._reject(e)
            return
        self._subscription = source.take_first().subscribe(
            write, self._reject, self._complete_empty
        )

    def _finish(self) -> List[Tuple[Callable[[], None], Callable[[BaseException], None]]]:
        self.finished = True
        self._coordinator._release_flight(self._key, self)
        waiters, self._waiters = self._waiters, []
        return waiters

    def _resolve(self, _value: Any) -> None:
        if self.finished:
            return
        for on_done, _ in self._finish():
            on_done()

    def _reject(self, error: BaseException) -> None:
        if self.finished:
            return
        logger.debug(f"Producer for key '{self._key}' failed: {error!s}")
        for _, on_error in self._finish():
            on_error(error)

    def _complete_empty(self) -> None:
        self._reject(EmptyStreamError(f"Producer for key '{self._key}' completed without a value"))


class _Resolution:
    """State of one get_or_set subscription."""

    def __init__(
        self,
        coordinator: "GetOrSetCoordinator",
        key: str,
        producer: Producer,
        cache_time: Optional[float],
        observer: Observer,
    ):
        self._coordinator = coordinator
        self._store = coordinator.store
        self._key = key
        self._producer = producer
        self._cache_time = cache_time
        self._observer = observer
        self._attempts = 0
        self._generation = 0
        self._closed = False
        self._leave_flight: Optional[Callable[[], None]] = None
        self._follow: Optional[Subscription] = None

    def start(self) -> Callable[[], None]:
        self._attempt()
        return self.close

    def close(self) -> None:
        self._closed = True
        self._generation += 1
        self._release()

    def _release(self) -> None:
        if self._leave_flight is not None:
            self._leave_flight()
            self._leave_flight = None
        if self._follow is not None:
            self._follow.unsubscribe()
            self._follow = None

    def _retry_soon(self, generation: int) -> None:
        if generation != self._generation or self._closed:
            return
        self._generation += 1
        self._release()
        if self._store.disposed:
            self._observer.on_complete()
            return
        asyncio.get_running_loop().call_soon(self._attempt)

    def _attempt(self) -> None:
        if self._closed or self._observer.stopped:
            return
        self._release()
        if self._store.disposed:
            self._observer.on_complete()
            return

        limit = self._coordinator.max_attempts
        if self._attempts >= limit:
            logger.warning(f"get_or_set gave up on key '{self._key}' after {self._attempts} attempts")
            self._observer.on_error(GetOrSetRaceError(self._key, self._attempts))
            return
        self._attempts += 1
        if self._attempts > 1:
            logger.debug(f"get_or_set retrying key '{self._key}' (attempt {self._attempts})")

        self._generation += 1
        generation = self._generation
        cell = self._store._values.cell(self._key)
        # Retries are not counted; a refetch after an emitted value counts again
        if self._attempts == 1 and self._store.config.enable_stats:
            if cell.present:
                self._store.stats.hits += 1
            else:
                self._store.stats.misses += 1
        if cell.present:
            self._follow_cell(cell, generation)
            return

        flight = self._coordinator._flights.get(self._key)
        if flight is None:
            flight = _Flight(self._coordinator, self._key)
            self._coordinator._flights[self._key] = flight
            leave = flight.join(
                lambda: self._follow_cell(cell, generation),
                lambda error: self._fail(error, generation),
            )
            self._leave_flight = leave
            logger.debug(f"get_or_set populating key '{self._key}'")
            flight.start(self._producer, self._cache_time)
        else:
            self._leave_flight = flight.join(
                lambda: self._follow_cell(cell, generation),
                lambda error: self._fail(error, generation),
            )

    def _fail(self, error: BaseException, generation: int) -> None:
        if generation == self._generation:
            self._observer.on_error(error)

    def _follow_cell(self, cell: Cell, generation: int) -> None:
        """Re-derive the value from the captured cell and keep following it."""
        if generation != self._generation or self._closed:
            return
        self._leave_flight = None

        def on_value(value: Any) -> None:
            if generation != self._generation:
                return
            if value is ABSENT:
                self._retry_soon(generation)
                return
            self._attempts = 0
            self._observer.on_next(value)

        follow = cell.as_stream().subscribe(
            on_value,
            self._observer.on_error,
            lambda: self._retry_soon(generation),
        )
        if generation == self._generation and not self._closed:
            self._follow = follow
        else:
            follow.unsubscribe()


class GetOrSetCoordinator(Generic[T]):
    """Builds get_or_set streams for one store and tracks in-flight populations."""

    def __init__(self, store: "EntityStore[T]", max_attempts: int):
        self.store = store
        self.max_attempts = max(1, int(max_attempts))
        self._flights: Dict[str, _Flight] = {}

    def _release_flight(self, key: str, flight: _Flight) -> None:
        if self._flights.get(key) is flight:
            del self._flights[key]

    def in_flight(self, key: str) -> bool:
        return key in self._flights

    def stream(self, key: str, producer: Producer, cache_time: Optional[float]) -> EntityStream[T]:
        def subscribe_fn(observer: Observer[T]) -> Callable[[], None]:
            return _Resolution(self, key, producer, cache_time, observer).start()

        return EntityStream(subscribe_fn).distinct_until_changed()
