# tests/conftest.py
"""Shared fixtures: signing accounts are slow to generate, so build them once."""

import tempfile
from pathlib import Path

import pytest

from hashstore.accounts import Account


@pytest.fixture(scope="session")
def owner_account():
    return Account.create("owner")


@pytest.fixture(scope="session")
def user1_account():
    return Account.create("user1")


@pytest.fixture(scope="session")
def user2_account():
    return Account.create("user2")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class FakeClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, start: float = 1_700_000_000):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 1):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
