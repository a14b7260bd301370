"""
Test Fixtures

Shared test entities and stream helpers.
"""

from .factories import ComplexEntity, EntityFactory, MockEntity, Recorder

__all__ = [
    "ComplexEntity",
    "EntityFactory",
    "MockEntity",
    "Recorder",
]
