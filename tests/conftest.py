# File: tests/conftest.py
# Contains pytest fixtures providing seeded in-memory stores.

import pytest

from sample_entities import build_item_store, build_music_store, build_school_store


@pytest.fixture
def item_store():
    """Items (external_id mapped) with two categories."""
    return build_item_store()


@pytest.fixture
def empty_item_store():
    return build_item_store(seed=False)


@pytest.fixture
def music_store():
    """Artists, albums and songs, every entity carrying an external id."""
    return build_music_store()


@pytest.fixture
def school_store():
    """Students and courses joined through enrollments."""
    return build_school_store()
