"""
Exceptions raised by the entity store.
"""

from typing import Any, Optional


class EntityStoreError(Exception):
    """Base error for the entity store."""


class InvalidEntityError(EntityStoreError):
    """Raised when a key cannot be derived from an entity."""

    def __init__(self, message: str, entity: Any = None):
        super().__init__(message)
        self.entity = entity


class StoreDisposedError(EntityStoreError):
    """Raised when a disposed store is used."""

    def __init__(self, store_name: Optional[str] = None):
        label = f"'{store_name}'" if store_name else "instance"
        super().__init__(f"Entity store {label} has been disposed")
        self.store_name = store_name


class GetOrSetRaceError(EntityStoreError):
    """Raised when get_or_set keeps losing the race against deletions."""

    def __init__(self, key: str, attempts: int):
        super().__init__(f"Race not resolved for key '{key}' after {attempts} attempts")
        self.key = key
        self.attempts = attempts


class EmptyStreamError(EntityStoreError):
    """Raised when awaiting the first value of a stream that completed empty."""
