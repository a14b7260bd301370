"""
Unit tests for the entity store facade.
"""

import asyncio
from dataclasses import replace

import pytest

from entitystore.cache.base import EvictionPolicy, StoreConfig
from entitystore.cache.memory import EntityStore
from entitystore.cache.streams import EntityStream
from entitystore.exceptions import InvalidEntityError, StoreDisposedError
from tests.fixtures import ComplexEntity, MockEntity


@pytest.mark.unit
class TestSetAndGet:
    """Tests for writing entities and reading them back."""

    @pytest.mark.asyncio
    async def test_get_emits_nothing_until_set(self, store, record, make_entity):
        entity = make_entity()
        recorder = record(store.get(entity.id))

        assert recorder.values == []

        store.set(entity)

        assert recorder.values == [entity]

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_current_value(self, store, record, make_entity):
        entity = make_entity()
        store.set(entity)

        assert record(store.get(entity.id)).values == [entity]

    @pytest.mark.asyncio
    async def test_set_returns_stream_of_key(self, store, record, make_entity):
        first = make_entity()
        second = make_entity(entity_id=first.id)
        recorder = record(store.set(first))

        store.set(second)

        assert recorder.values == [first, second]

    @pytest.mark.asyncio
    async def test_identical_write_is_suppressed(self, store, record, make_entity):
        entity = make_entity()
        recorder = record(store.get(entity.id))

        store.set(entity)
        store.set(entity)
        store.set_many([entity, entity])

        assert recorder.values == [entity]
        assert store.stats.sets == 1

    @pytest.mark.asyncio
    async def test_write_from_subscriber_keeps_order(self, store, record):
        """Every subscriber ends on the value the store holds."""
        first = MockEntity(id="k", name="one")
        second = MockEntity(id="k", name="two")

        def replace_first(entity):
            if entity is first:
                store.set(second)

        store.get("k").subscribe(replace_first)
        later = record(store.get("k"))

        store.set(first)

        assert [e.name for e in later.values] == ["two"]
        assert record(store.get("k")).values == [second]

    @pytest.mark.asyncio
    async def test_delete_from_subscriber_keeps_order(self, store, record, make_entity):
        entity = make_entity()
        store.get(entity.id).subscribe(lambda e: store.delete(e.id))
        later = record(store.get(entity.id))

        store.set(entity)

        assert later.values == []
        assert store.has(entity.id) is False

    @pytest.mark.asyncio
    async def test_equal_but_distinct_value_is_emitted(self, store, record):
        a = MockEntity(id="same", name="x")
        b = MockEntity(id="same", name="x")
        recorder = record(store.get("same"))

        store.set(a)
        store.set(b)

        assert len(recorder.values) == 2
        assert recorder.values[1] is b

    @pytest.mark.asyncio
    async def test_int_and_text_keys_are_equivalent(self, store, make_entity):
        store.set(make_entity(entity_id="7"))

        assert store.has(7) is True
        assert store.has("7") is True
        assert store.keys() == ["7"]

    @pytest.mark.asyncio
    async def test_custom_id_accessor(self, record):
        store = EntityStore(StoreConfig(id_accessor=lambda e: e.complex_id))
        entity = ComplexEntity(complex_id=42, payload="data")

        store.set(entity)

        assert record(store.get(42)).values == [entity]
        store.dispose()

    @pytest.mark.asyncio
    async def test_default_id_accessor_reads_mappings(self):
        store = EntityStore()

        store.set({"id": 1, "name": "one"})

        assert store.has("1") is True
        store.dispose()

    @pytest.mark.asyncio
    async def test_missing_id_raises(self):
        store = EntityStore()

        with pytest.raises(InvalidEntityError):
            store.set(object())
        store.dispose()

    @pytest.mark.asyncio
    async def test_non_key_id_raises(self):
        store = EntityStore(StoreConfig(id_accessor=lambda e: 1.5))

        with pytest.raises(InvalidEntityError):
            store.set("anything")
        store.dispose()

    def test_invalid_key_types(self, store):
        with pytest.raises(InvalidEntityError):
            store.get(1.5)
        with pytest.raises(InvalidEntityError):
            store.has(True)


@pytest.mark.unit
class TestAsyncWrites:
    """Tests for writing from awaitables and async iterables."""

    @pytest.mark.asyncio
    async def test_set_from_awaitable(self, store, make_entity):
        entity = make_entity()

        async def fetch():
            await asyncio.sleep(0)
            return entity

        assert await store.set(fetch()).first() is entity
        assert store.has(entity.id)

    @pytest.mark.asyncio
    async def test_set_from_async_iterable_follows_latest(self, store, record, make_entity):
        first = make_entity()
        second = make_entity()

        async def generate():
            yield first
            await asyncio.sleep(0.01)
            yield second

        recorder = record(store.set(generate()))
        await asyncio.sleep(0.05)

        assert recorder.values == [first, second]
        assert store.has(first.id) and store.has(second.id)

    @pytest.mark.asyncio
    async def test_set_from_stream(self, store, record, make_entity):
        entities = [make_entity(), make_entity()]

        recorder = record(store.set(EntityStream.of(*entities)))

        assert recorder.values == entities
        assert recorder.completed is False
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_failed_producer_propagates(self, store):
        async def fail():
            raise ValueError("fetch failed")

        with pytest.raises(ValueError):
            await store.set(fail()).first()
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_set_many(self, store, make_entity):
        entities = [make_entity() for _ in range(3)]

        assert store.set_many(entities) == entities
        assert len(store) == 3

    @pytest.mark.asyncio
    async def test_set_many_from_awaitable(self, store, make_entity):
        entities = [make_entity() for _ in range(3)]

        async def fetch():
            return entities

        assert await store.set_many(fetch()).first() == entities
        assert sorted(store.keys()) == sorted(e.id for e in entities)

    @pytest.mark.asyncio
    async def test_set_many_failure_keeps_applied_batches(self, store, record, make_entity):
        batch = [make_entity(), make_entity()]

        async def generate():
            yield batch
            raise RuntimeError("second batch failed")

        recorder = record(store.set_many(generate()))
        await asyncio.sleep(0.01)

        assert recorder.values == [batch]
        assert isinstance(recorder.errors[0], RuntimeError)
        assert len(store) == 2


@pytest.mark.unit
class TestDelete:
    """Tests for deleting entries."""

    @pytest.mark.asyncio
    async def test_delete_by_key(self, store, make_entity):
        entity = make_entity()
        store.set(entity)

        assert store.delete(entity.id) is True
        assert store.has(entity.id) is False
        assert store.delete(entity.id) is False

    @pytest.mark.asyncio
    async def test_delete_by_entity_and_int_key(self, store, make_entity):
        a = make_entity(entity_id="1")
        b = make_entity(entity_id="2")
        store.set_many([a, b])

        assert store.delete(a) is True
        assert store.delete(2) is True
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_delete_cancels_eviction_timer(self, store, make_entity):
        entity = make_entity()
        store.set(entity)

        store.delete(entity.id)

        assert store._evictions.pending(entity.id) is False

    @pytest.mark.asyncio
    async def test_subscriber_of_deleted_key_stays_silent(self, store, record, make_entity):
        """Old subscribers keep the deleted cell; a later write goes to a new one."""
        old = make_entity()
        new = make_entity(entity_id=old.id)
        recorder = record(store.get(old.id))
        store.set(old)

        store.delete(old.id)
        store.set(new)

        assert recorder.values == [old]
        assert record(store.get(old.id)).values == [new]

    @pytest.mark.asyncio
    async def test_delete_from_awaitable(self, store, make_entity):
        entity = make_entity()
        store.set(entity)

        async def resolve_key():
            return entity.id

        assert await store.delete(resolve_key()).first() is None
        assert store.has(entity.id) is False

    @pytest.mark.asyncio
    async def test_delete_from_stream(self, store, record, make_entity):
        entities = [make_entity(), make_entity()]
        store.set_many(entities)

        recorder = record(store.delete(EntityStream.of(*entities)))

        assert recorder.values == [None, None]
        assert recorder.completed is True
        assert len(store) == 0


@pytest.mark.unit
class TestExpiry:
    """Tests for time-based eviction."""

    @pytest.mark.asyncio
    async def test_entry_expires(self, store, record, make_entity):
        entity = make_entity()
        store.set(entity, cache_time=0.05)

        assert store.has(entity.id) is True
        await asyncio.sleep(0.1)

        assert store.has(entity.id) is False
        assert record(store.get(entity.id)).values == []
        assert store.stats.evictions == 1

    @pytest.mark.asyncio
    async def test_write_resets_timer(self, store, make_entity):
        entity = make_entity()
        store.set(entity, cache_time=0.1)
        await asyncio.sleep(0.06)

        store.set(entity, cache_time=0.1)
        await asyncio.sleep(0.06)
        assert store.has(entity.id) is True

        await asyncio.sleep(0.1)
        assert store.has(entity.id) is False

    @pytest.mark.asyncio
    async def test_default_cache_time(self, store_config, make_entity):
        store = EntityStore(replace(store_config, default_cache_time=0.03))
        entity = make_entity()

        store.set(entity)
        await asyncio.sleep(0.08)

        assert store.has(entity.id) is False
        store.dispose()

    @pytest.mark.asyncio
    async def test_expiry_while_observed_by_default(self, store, record, make_entity):
        entity = make_entity()
        record(store.get(entity.id))

        store.set(entity, cache_time=0.03)
        await asyncio.sleep(0.08)

        assert store.has(entity.id) is False

    @pytest.mark.asyncio
    async def test_deferred_eviction_while_observed(self, store_config, record, make_entity):
        store = EntityStore(
            replace(store_config, eviction_policy=EvictionPolicy.DEFER_WHILE_OBSERVED)
        )
        entity = make_entity()
        recorder = record(store.get(entity.id))

        store.set(entity, cache_time=0.03)
        await asyncio.sleep(0.08)
        assert store.has(entity.id) is True

        recorder.unsubscribe()
        await asyncio.sleep(0.08)
        assert store.has(entity.id) is False
        store.dispose()


@pytest.mark.unit
class TestLifecycle:
    """Tests for clear() and dispose()."""

    @pytest.mark.asyncio
    async def test_clear(self, store, record, make_entity):
        entities = [make_entity(), make_entity()]
        store.set_many(entities)
        recorder = record(store.get(entities[0].id))

        assert store.clear() == 2
        assert len(store) == 0
        assert recorder.completed is True
        assert store.clear() == 0
        assert len(store._evictions) == 0

    @pytest.mark.asyncio
    async def test_store_usable_after_clear(self, store, make_entity):
        store.set(make_entity())
        store.clear()

        entity = make_entity()
        store.set(entity)

        assert store.has(entity.id) is True

    @pytest.mark.asyncio
    async def test_dispose_after_clear(self, store, make_entity):
        store.set_many([make_entity(), make_entity()])

        store.clear()
        store.dispose()

        assert store.disposed is True
        assert len(store) == 0
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self, store, make_entity):
        store.set(make_entity())

        store.dispose()
        store.dispose()
        store.clear()

        assert store.disposed is True
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_use_after_dispose_raises(self, store, make_entity):
        entity = make_entity()
        store.dispose()

        with pytest.raises(StoreDisposedError):
            store.set(entity)
        with pytest.raises(StoreDisposedError):
            store.get(entity.id)
        with pytest.raises(StoreDisposedError):
            store.delete(entity.id)
        with pytest.raises(StoreDisposedError):
            store.get_or_set(entity.id, lambda: entity)
        with pytest.raises(StoreDisposedError):
            store.get_all()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, store_config, make_entity):
        async with EntityStore(store_config) as store:
            store.set(make_entity())

        assert store.disposed is True
        assert len(store) == 0


@pytest.mark.unit
class TestStats:
    """Tests for store statistics."""

    @pytest.mark.asyncio
    async def test_hits_and_misses(self, store, make_entity):
        entity = make_entity()
        store.get(entity.id)
        store.set(entity)
        store.get(entity.id)
        store.delete(entity.id)

        stats = store.get_stats().to_dict()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 1
        assert stats["deletes"] == 1
        assert stats["entry_count"] == 0

    @pytest.mark.asyncio
    async def test_stats_disabled(self, store_config, make_entity):
        store = EntityStore(replace(store_config, enable_stats=False))

        store.set(make_entity())

        assert store.stats.sets == 0
        store.dispose()
