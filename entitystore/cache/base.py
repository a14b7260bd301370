"""
Store configuration, statistics and key helpers.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Union

from entitystore.exceptions import InvalidEntityError

Key = Union[str, int]

# Default cache time in seconds (10 minutes)
DEFAULT_CACHE_TIME = 600.0

# Debounce window for aggregate snapshots, roughly human reaction time
HUMAN_REACTION_TIME = 0.2

DEFAULT_MAX_GET_OR_SET_ATTEMPTS = 10


class _Absent:
    """Sentinel for a cell holding no entity."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


class EvictionPolicy(str, Enum):
    """What happens when an entry's cache time runs out."""
    UNCONDITIONAL = "unconditional"  # Always evict on expiry
    DEFER_WHILE_OBSERVED = "defer_while_observed"  # Re-arm while observers are attached


def is_key(value: Any) -> bool:
    """Check whether a value is usable as a key (text or integer, not bool)."""
    return isinstance(value, (str, int)) and not isinstance(value, bool)


def normalize_key(key: Key) -> str:
    """Normalize a key to its canonical text form."""
    if not is_key(key):
        raise InvalidEntityError(f"Invalid key type: {type(key).__name__}", entity=key)
    return str(key)


def default_id_accessor(entity: Any) -> Key:
    """Read the conventional ``id`` field of an entity."""
    if isinstance(entity, Mapping):
        if "id" in entity:
            return entity["id"]
    elif hasattr(entity, "id"):
        return entity.id
    raise InvalidEntityError(
        f"Entity of type {type(entity).__name__} has no 'id'; configure an id_accessor",
        entity=entity,
    )


@dataclass(frozen=True)
class StoreConfig:
    """Entity store configuration settings."""

    # Tells the store how to access the unique ID of an entity
    id_accessor: Callable[[Any], Key] = default_id_accessor

    # Default time-to-live for entries (in seconds)
    default_cache_time: float = DEFAULT_CACHE_TIME

    # Quiescence window for get_all() recomputation (in seconds)
    debounce_time: float = HUMAN_REACTION_TIME

    eviction_policy: EvictionPolicy = EvictionPolicy.UNCONDITIONAL

    # Consecutive get_or_set attempts allowed before giving up on a race
    max_get_or_set_attempts: int = DEFAULT_MAX_GET_OR_SET_ATTEMPTS

    # Whether to enable store statistics
    enable_stats: bool = True

    def key_of(self, entity: Any) -> str:
        """Derive the normalized key of an entity."""
        key = self.id_accessor(entity)
        if not is_key(key):
            raise InvalidEntityError(
                f"id_accessor returned {type(key).__name__}, expected str or int",
                entity=entity,
            )
        return str(key)


@dataclass
class StoreStats:
    """Store statistics."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    entry_count: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 2),
            "entry_count": self.entry_count,
        }
