"""Shared pytest fixtures for atomx tests."""

import pytest

from atomx.store import _reset_default_store


@pytest.fixture(autouse=True)
def reset_default_store():
    """Give every test a fresh default store."""
    _reset_default_store()
    yield
    _reset_default_store()
