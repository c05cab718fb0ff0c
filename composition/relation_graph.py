"""Pitch-class-set relation graph walker.

Stochastic chord progression as a random walk over a precomputed graph whose
nodes are pitch-class sets and whose edges join closely related sets.
"""

import json
import logging
import random
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, field_validator, model_validator

from composition.pitch_class_set import EMPTY_SET, PitchClassSet

logger = logging.getLogger(__name__)

DEFAULT_DATASET_PATH = Path(__file__).parent / "data" / "pcs_graph.json"


class GraphDataset(BaseModel):
    """Precomputed relation graph record.

    Only the record shape is validated; connectivity and edge symmetry are
    taken as given.
    """

    nodes: List[str]
    adjacency: List[List[int]]

    @field_validator("nodes")
    @classmethod
    def validate_nodes(cls, v: List[str]) -> List[str]:
        for bits in v:
            if len(bits) != 12 or set(bits) - {"0", "1"}:
                raise ValueError(f"Invalid node string: {bits!r} (expected 12 binary digits)")
        return v

    @model_validator(mode="after")
    def validate_adjacency(self) -> "GraphDataset":
        if len(self.adjacency) != len(self.nodes):
            raise ValueError(
                f"Adjacency has {len(self.adjacency)} entries for {len(self.nodes)} nodes"
            )
        for index, neighbors in enumerate(self.adjacency):
            for neighbor in neighbors:
                if not (0 <= neighbor < len(self.nodes)):
                    raise ValueError(f"Node {index} has out-of-range neighbor {neighbor}")
        return self

    @classmethod
    def empty(cls) -> "GraphDataset":
        return cls(nodes=[], adjacency=[])


def load_graph_dataset(path: Optional[Union[str, Path]] = None) -> GraphDataset:
    """Load a relation graph dataset from JSON.

    Args:
        path: JSON file path (defaults to the packaged triad graph)

    Returns:
        Validated GraphDataset

    Raises:
        OSError: If the file cannot be read
        ValueError: If the record is malformed
    """
    dataset_path = Path(path) if path is not None else DEFAULT_DATASET_PATH

    with open(dataset_path, encoding="utf-8") as f:
        raw = json.load(f)

    dataset = GraphDataset.model_validate(raw)
    logger.info(f"Loaded relation graph: {len(dataset.nodes)} nodes from {dataset_path.name}")
    return dataset


class RelationGraph:
    """Random walk over a fixed pitch-class-set relation graph."""

    def __init__(self, dataset: GraphDataset, rng=None):
        """Initialize graph walker.

        Args:
            dataset: Precomputed nodes and adjacency (never mutated)
            rng: Random source with a ``random()`` method (default: new
                ``random.Random``)
        """
        self.rng = rng if rng is not None else random.Random()
        self.nodes: List[PitchClassSet] = [
            PitchClassSet.from_binary_string(bits) for bits in dataset.nodes
        ]
        self.adjacency: List[tuple] = [tuple(neighbors) for neighbors in dataset.adjacency]

        # Uniformly random starting node
        self.current_index = self._random_index(len(self.nodes)) if self.nodes else 0

        logger.debug(
            f"Relation graph initialized ({len(self.nodes)} nodes, start={self.current_index})"
        )

    def _random_index(self, n: int) -> int:
        return min(int(self.rng.random() * n), n - 1)

    def current(self) -> PitchClassSet:
        """Return the set at the current node (empty set for an empty graph)."""
        if not self.nodes:
            return EMPTY_SET
        return self.nodes[self.current_index]

    def advance(self) -> None:
        """Step to a random neighbor, or restart uniformly on a dead end."""
        if not self.nodes:
            return

        neighbors = self.adjacency[self.current_index]
        if neighbors:
            self.current_index = neighbors[self._random_index(len(neighbors))]
            return

        # Disconnected node: uniform restart over the whole graph
        self.current_index = self._random_index(len(self.nodes))

    def __len__(self) -> int:
        return len(self.nodes)
