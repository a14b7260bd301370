"""
Decorator for memoizing entity fetch functions in an entity store.
"""

import functools
import inspect
from typing import Any, Callable, Optional

from entitystore.cache.base import Key
from entitystore.cache.manager import store_registry
from entitystore.cache.memory import EntityStore


def cached_entity(
    store_name: Optional[str] = None,
    store: Optional[EntityStore] = None,
    cache_time: Optional[float] = None,
    key_builder: Optional[Callable[..., Key]] = None,
) -> Callable:
    """
    Decorator to serve an async fetch function through ``get_or_set``.

    The key must be the same key the store derives from the fetched entity.
    By default it is the first positional argument (after ``self``/``cls``
    for methods).

    Args:
        store_name: Registry name of the store (defaults to the function's qualified name)
        store: Explicit store to use instead of the registry
        cache_time: Time-to-live in seconds for fetched entities
        key_builder: Custom function building the key from args/kwargs

    Usage:
        @cached_entity(store_name="users", cache_time=300)
        async def fetch_user(user_id: int) -> User:
            return await api.get_user(user_id)

        user = await fetch_user(42)      # fetched
        user = await fetch_user(42)      # served from the store
        fetch_user.invalidate(42)
    """
    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"cached_entity requires an async function, got {func.__qualname__}")

        sig = inspect.signature(func)
        params = list(sig.parameters)
        skip_first = bool(params) and params[0] in ("self", "cls")

        def resolve_store() -> EntityStore:
            if store is not None:
                return store
            return store_registry.get_store(store_name or func.__qualname__)

        def build_key(*args, **kwargs) -> Key:
            if key_builder is not None:
                return key_builder(*args, **kwargs)
            bound = sig.bind(*args, **kwargs)
            values = list(bound.arguments.values())
            if skip_first:
                values = values[1:]
            if not values:
                raise TypeError(f"{func.__qualname__}() needs a key argument")
            return values[0]

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            key = build_key(*args, **kwargs)
            stream = resolve_store().get_or_set(
                key,
                lambda: func(*args, **kwargs),
                cache_time,
            )
            return await stream.first()

        def invalidate(*args, **kwargs) -> bool:
            return resolve_store().delete(build_key(*args, **kwargs))

        wrapper.cache_key_builder = build_key
        wrapper.invalidate = invalidate
        wrapper.store = resolve_store
        return wrapper

    return decorator
