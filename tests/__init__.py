"""
entitystore Test Suite

Test Categories:
- unit/: Fast, isolated unit tests (time-based tests use short cache times)
- fixtures/: Shared test entities and stream recorders
"""
