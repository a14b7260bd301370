"""
Entity Store Caching Layer

Provides reactive, TTL-bound caching of entities:
- Per-key streams that replay the latest value to late subscribers
- Automatic eviction after a configurable cache time
- Race-safe get-or-fetch with shared producer calls
- Debounced snapshots of every live entity
- Named stores through a global registry
"""

from entitystore.cache.base import (
    ABSENT,
    DEFAULT_CACHE_TIME,
    HUMAN_REACTION_TIME,
    EvictionPolicy,
    Key,
    StoreConfig,
    StoreStats,
    default_id_accessor,
    is_key,
    normalize_key,
)
from entitystore.cache.streams import EntityStream, Subscription, to_stream
from entitystore.cache.memory import EntityStore
from entitystore.cache.manager import StoreRegistry, get_store, store_registry
from entitystore.cache.decorators import cached_entity

__all__ = [
    "ABSENT",
    "DEFAULT_CACHE_TIME",
    "HUMAN_REACTION_TIME",
    "EvictionPolicy",
    "Key",
    "StoreConfig",
    "StoreStats",
    "default_id_accessor",
    "is_key",
    "normalize_key",
    "EntityStream",
    "Subscription",
    "to_stream",
    "EntityStore",
    "StoreRegistry",
    "get_store",
    "store_registry",
    "cached_entity",
]
