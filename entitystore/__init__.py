"""
entitystore - Reactive TTL Entity Cache

An in-process cache for entities fetched from elsewhere:
- Per-key streams notifying every subscriber of each change
- Automatic eviction after a configurable cache time
- Memoized get-or-fetch that survives concurrent deletions
- Debounced snapshots of everything currently cached
"""

__version__ = "1.0.0"
__license__ = "MIT"

from entitystore.cache import (
    EntityStore,
    EntityStream,
    EvictionPolicy,
    StoreConfig,
    StoreRegistry,
    cached_entity,
    get_store,
    store_registry,
)
from entitystore.config import get_config, load_config
from entitystore.exceptions import (
    EmptyStreamError,
    EntityStoreError,
    GetOrSetRaceError,
    InvalidEntityError,
    StoreDisposedError,
)

__all__ = [
    "__version__",
    "EntityStore",
    "EntityStream",
    "EvictionPolicy",
    "StoreConfig",
    "StoreRegistry",
    "cached_entity",
    "get_store",
    "store_registry",
    "get_config",
    "load_config",
    "EmptyStreamError",
    "EntityStoreError",
    "GetOrSetRaceError",
    "InvalidEntityError",
    "StoreDisposedError",
]
