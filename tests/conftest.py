"""
entitystore Test Configuration

Shared fixtures and configuration for all tests.
"""

import os
from typing import Callable, Generator, List

import pytest

from entitystore.cache.base import StoreConfig
from entitystore.cache.memory import EntityStore
from entitystore.cache.streams import EntityStream
from tests.fixtures import EntityFactory, MockEntity, Recorder

# Short timings keep time-based tests fast
FAST_DEBOUNCE = 0.05


# ============ Entity Fixtures ============


@pytest.fixture
def make_entity() -> Callable[..., MockEntity]:
    """Factory for entities with unique ids."""
    return EntityFactory.create


# ============ Store Fixtures ============


@pytest.fixture
def store_config() -> StoreConfig:
    """Store config with a short debounce window."""
    return StoreConfig(
        id_accessor=lambda entity: entity.id,
        debounce_time=FAST_DEBOUNCE,
    )


@pytest.fixture
def store(store_config: StoreConfig) -> Generator[EntityStore[MockEntity], None, None]:
    """A fresh store, disposed after the test."""
    entity_store: EntityStore[MockEntity] = EntityStore(store_config, name="test")
    yield entity_store
    entity_store.dispose()


@pytest.fixture
def record() -> Generator[Callable[[EntityStream], Recorder], None, None]:
    """Create recorders that are unsubscribed after the test."""
    recorders: List[Recorder] = []

    def _record(stream: EntityStream) -> Recorder:
        recorder = Recorder(stream)
        recorders.append(recorder)
        return recorder

    yield _record
    for recorder in recorders:
        recorder.unsubscribe()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ENTITYSTORE_* variables from leaking into tests."""
    for name in list(os.environ):
        if name.startswith("ENTITYSTORE_"):
            monkeypatch.delenv(name, raising=False)


# ============ Pytest Configuration ============


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "slow: Slow tests")
