"""Shared fixtures for Music Box tests."""

import itertools

import pytest

from composition.relation_graph import GraphDataset, load_graph_dataset


class StubRng:
    """Random source replaying fixed values (cycled)."""

    def __init__(self, *values: float):
        self._values = itertools.cycle(values)
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return next(self._values)


@pytest.fixture
def stub_rng():
    return StubRng


@pytest.fixture(scope="session")
def triad_dataset() -> GraphDataset:
    """Packaged 24-triad relation graph."""
    return load_graph_dataset()


@pytest.fixture
def empty_dataset() -> GraphDataset:
    return GraphDataset.empty()
