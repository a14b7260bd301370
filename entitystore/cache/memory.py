"""
In-memory reactive entity store with per-key TTL eviction.
"""

import logging
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, TypeVar, Union

from entitystore.cache.aggregate import AggregateViewBuilder
from entitystore.cache.base import (
    ABSENT,
    EvictionPolicy,
    Key,
    StoreConfig,
    StoreStats,
    is_key,
    normalize_key,
)
from entitystore.cache.bus import ChangeBus
from entitystore.cache.cell import KeyedValueStore
from entitystore.cache.coordinator import GetOrSetCoordinator
from entitystore.cache.scheduler import EvictionScheduler
from entitystore.cache.streams import EntityStream, is_async_source, to_stream
from entitystore.exceptions import StoreDisposedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EntityStore(Generic[T]):
    """
    Reactive in-memory store of entities keyed by an id accessor.

    Features:
    - Replaying per-key streams: subscribers get the current value, then every change
    - Time-based eviction, reset on every write
    - Race-safe get-or-fetch with shared producer calls
    - Debounced snapshot stream of every present entity
    - Values, awaitables and streams accepted wherever entities are written

    All methods must be called from the event loop thread; writes arm
    timers on the running loop.
    """

    def __init__(self, config: Optional[StoreConfig] = None, name: Optional[str] = None):
        self.config = config or StoreConfig()
        self.name = name
        self.stats = StoreStats()
        self._values: KeyedValueStore[T] = KeyedValueStore()
        self._evictions = EvictionScheduler()
        self._changes = ChangeBus()
        # Last cache time per key, used to re-arm deferred evictions
        self._ttls: Dict[str, float] = {}
        self._aggregate = AggregateViewBuilder(self._values, self._changes, self.config.debounce_time)
        self._coordinator: GetOrSetCoordinator[T] = GetOrSetCoordinator(
            self, self.config.max_get_or_set_attempts
        )
        self._disposed = False

    def __repr__(self) -> str:
        return f"<EntityStore name={self.name!r} entries={len(self._values)}>"

    async def __aenter__(self) -> "EntityStore[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _ensure_open(self) -> None:
        if self._disposed:
            raise StoreDisposedError(self.name)

    def _cache_time(self, cache_time: Optional[float]) -> float:
        return self.config.default_cache_time if cache_time is None else float(cache_time)

    def _update_entry_count(self) -> None:
        if self.config.enable_stats:
            self.stats.entry_count = len(self._values)

    # --- Eviction ---

    def _expire(self, key: str) -> None:
        """Timer callback: evict a key whose cache time ran out."""
        if self._disposed:
            return
        cell = self._values.peek(key)
        if cell is None or not cell.present:
            return
        if (
            self.config.eviction_policy == EvictionPolicy.DEFER_WHILE_OBSERVED
            and cell.observer_count > 0
        ):
            delay = self._ttls.get(key, self.config.default_cache_time)
            logger.debug(f"Deferring eviction of '{key}': {cell.observer_count} observers attached")
            self._evictions.schedule(key, delay, self._expire)
            return
        logger.debug(f"Evicting '{key}'")
        self._ttls.pop(key, None)
        self._values.clear_key(key)
        if self.config.enable_stats:
            self.stats.evictions += 1
        self._update_entry_count()
        self._changes.post()

    # --- Writes ---

    def _set_sync(self, value: T, cache_time: float) -> EntityStream[T]:
        self._ensure_open()
        key = self.config.key_of(value)
        cell = self._values.cell(key)
        # Arm the timer first: subscribers reacting to the write may delete the key
        self._ttls[key] = cache_time
        self._evictions.schedule(key, cache_time, self._expire)
        if cell.value is not value:
            if self.config.enable_stats:
                self.stats.sets += 1
            logger.debug(f"Storing entity '{key}' (cache time {cache_time}s)")
            self._values.write(key, value)
            self._update_entry_count()
            self._changes.post()
        return self._present_values(key)

    def set(self, value: Any, cache_time: Optional[float] = None) -> EntityStream[T]:
        """
        Store an entity.

        Args:
            value: An entity, or an awaitable / stream of entities
            cache_time: Time-to-live in seconds (store default if not specified)

        Returns:
            The stream of entities stored under the entity's key. For an
            awaitable or stream input, the returned stream stores each
            emitted entity and follows its key until the next emission.

        Async inputs are cold: nothing is awaited or stored until the
        returned stream is subscribed to.
        """
        ttl = self._cache_time(cache_time)
        if is_async_source(value):
            self._ensure_open()
            return to_stream(value).switch_map(lambda entity: self._set_sync(entity, ttl))
        return self._set_sync(value, ttl)

    def _set_many_sync(self, values: Iterable[T], cache_time: float) -> List[T]:
        items = list(values)
        for value in items:
            self._set_sync(value, cache_time)
        return items

    def set_many(
        self,
        values: Any,
        cache_time: Optional[float] = None,
    ) -> Union[List[T], EntityStream[List[T]]]:
        """
        Store multiple entities.

        Args:
            values: An iterable of entities, or an awaitable / stream of lists
            cache_time: Time-to-live in seconds

        Returns:
            The stored list for a synchronous input, otherwise a stream that
            stores and forwards each emitted list.
        """
        ttl = self._cache_time(cache_time)
        if is_async_source(values):
            self._ensure_open()
            return to_stream(values).map(lambda items: self._set_many_sync(items, ttl))
        return self._set_many_sync(values, ttl)

    def _delete_sync(self, target: Union[T, Key]) -> bool:
        self._ensure_open()
        key = normalize_key(target) if is_key(target) else self.config.key_of(target)
        self._evictions.cancel(key)
        self._ttls.pop(key, None)
        removed = self._values.clear_key(key)
        if removed:
            if self.config.enable_stats:
                self.stats.deletes += 1
            self._update_entry_count()
            logger.debug(f"Deleted entity '{key}'")
        self._changes.post()
        return removed

    def delete(self, target: Any) -> Union[bool, EntityStream[None]]:
        """
        Delete an entity from the store.

        Args:
            target: A key, an entity, or an awaitable / stream of either

        Returns:
            Whether a present entry was removed, or for async input a stream
            emitting None after each deletion. That stream is cold: nothing
            is deleted until it is subscribed to.
        """
        if is_async_source(target):
            self._ensure_open()

            def delete_one(item: Any) -> None:
                self._delete_sync(item)

            return to_stream(target).map(delete_one)
        return self._delete_sync(target)

    def clear(self) -> int:
        """Remove every entry; subscribers of every cell are completed."""
        self._evictions.cancel_all()
        self._ttls.clear()
        count = self._values.clear_all()
        self._update_entry_count()
        if count:
            logger.debug(f"Cleared {count} entities")
        self._changes.post()
        return count

    def dispose(self) -> None:
        """Close change notifications and clear the store for good."""
        if self._disposed:
            return
        self._disposed = True
        self._changes.close()
        self.clear()
        logger.info(f"Entity store {self.name or 'instance'} disposed")

    # --- Reads ---

    def _present_values(self, key: str) -> EntityStream[T]:
        cell = self._values.cell(key)
        return cell.as_stream().filter(lambda value: value is not ABSENT)

    def get(self, key: Key) -> EntityStream[T]:
        """Stream of the entity stored under a key; absence is never emitted."""
        self._ensure_open()
        key = normalize_key(key)
        if self.config.enable_stats:
            if key in self._values:
                self.stats.hits += 1
            else:
                self.stats.misses += 1
        return self._present_values(key)

    def get_or_set(
        self,
        key: Key,
        producer: Callable[[], Any],
        cache_time: Optional[float] = None,
    ) -> EntityStream[T]:
        """
        Get an entity, populating it from ``producer`` when absent.

        Args:
            key: The key of the entity
            producer: Called with no arguments when the entity is absent;
                may return an entity, an awaitable or a stream
            cache_time: Time-to-live in seconds for a populated entity

        Returns:
            The stream of entities for the key. When the entry is deleted
            or expires while subscribed it is populated again.
        """
        self._ensure_open()
        return self._coordinator.stream(normalize_key(key), producer, cache_time)

    def get_all(self) -> EntityStream[List[T]]:
        """Stream of snapshots of every present entity, debounced on changes."""
        self._ensure_open()
        return self._aggregate.stream()

    def has(self, key: Key) -> bool:
        """Check whether an entity is present without creating a cell."""
        return normalize_key(key) in self._values

    def keys(self) -> List[str]:
        return self._values.present_keys()

    def __len__(self) -> int:
        return len(self._values)

    def get_stats(self) -> StoreStats:
        """Get store statistics."""
        return self.stats
