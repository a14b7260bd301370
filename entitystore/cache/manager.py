"""
Store registry - central access point for named entity stores.
"""

import logging
from typing import Any, Dict, List, Optional

from entitystore.cache.base import Key, StoreConfig
from entitystore.cache.memory import EntityStore

logger = logging.getLogger(__name__)


class StoreRegistry:
    """
    Hands out one EntityStore per name, constructing it lazily.

    A store created without an explicit config takes its settings from the
    global configuration (see ``entitystore.config``).
    """

    def __init__(self) -> None:
        self._stores: Dict[str, EntityStore[Any]] = {}

    def get_store(self, name: Key, config: Optional[StoreConfig] = None) -> EntityStore[Any]:
        """Get the store registered under a name, creating it if necessary."""
        key = str(name)
        store = self._stores.get(key)
        if store is None:
            if config is None:
                from entitystore.config import get_config
                config = get_config().cache.to_store_config()
            store = EntityStore(config, name=key)
            self._stores[key] = store
            logger.info(f"Created entity store '{key}'")
        return store

    def has_store(self, name: Key) -> bool:
        return str(name) in self._stores

    def remove_store(self, name: Key) -> bool:
        """Dispose and forget a store."""
        store = self._stores.pop(str(name), None)
        if store is None:
            return False
        store.dispose()
        return True

    def dispose_all(self) -> None:
        """Dispose every registered store."""
        stores, self._stores = self._stores, {}
        for store in stores.values():
            store.dispose()

    def names(self) -> List[str]:
        return list(self._stores.keys())

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        """Statistics of every registered store, by name."""
        return {name: store.get_stats().to_dict() for name, store in self._stores.items()}


# Global store registry instance
store_registry = StoreRegistry()


def get_store(name: Key, config: Optional[StoreConfig] = None) -> EntityStore[Any]:
    """Get a store from the global registry."""
    return store_registry.get_store(name, config)
