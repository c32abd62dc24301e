"""
Shared fixtures for smartrepo tests.
"""

import pytest


class FakeClock:
    """Deterministic Unix-ms clock that advances one ms per reading."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


def ascending_ids():
    """Gives ids id-000, id-001, id-002, etc."""
    counter = 0

    def next_id() -> str:
        nonlocal counter
        value = f"id-{counter:03d}"
        counter += 1
        return value

    return next_id


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def id_factory():
    return ascending_ids()
