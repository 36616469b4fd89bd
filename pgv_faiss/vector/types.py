"""
Data carriers for the index core: vector batches, search results and training state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Sequence

import numpy as np

from ..core.errors import VectorIndexError


class TrainingState(str, Enum):
    """Whether an index has learned the statistics it needs for add/search."""

    UNTRAINED = "untrained"
    TRAINING = "training"
    TRAINED = "trained"


@dataclass(frozen=True)
class VectorBatch:
    """Fixed-dimension float32 vectors with parallel int64 identifiers."""

    vectors: np.ndarray
    """(n, d) float32 matrix, C-contiguous"""

    ids: np.ndarray
    """(n,) int64 caller-assigned identifiers, in insertion order"""

    @classmethod
    def build(cls, vectors, ids, dimension: int, count: Optional[int] = None) -> "VectorBatch":
        """Validate and normalize caller input.

        `vectors` may be a 2-D array-like or a flattened sequence of count * dimension
        floats. Raises VectorIndexError on any shape or count mismatch.
        """
        if vectors is None or ids is None:
            raise VectorIndexError("vectors and ids are required")

        try:
            matrix = np.asarray(vectors, dtype=np.float32)
            id_array = np.asarray(ids, dtype=np.int64).ravel()
        except (TypeError, ValueError) as e:
            raise VectorIndexError("vectors and ids must be numeric", cause=e) from e

        if matrix.ndim == 1:
            if matrix.size % dimension != 0:
                raise VectorIndexError(
                    f"Vector dimension mismatch: {matrix.size} values cannot form vectors of dimension {dimension}"
                )
            matrix = matrix.reshape(-1, dimension)
        elif matrix.ndim != 2:
            raise VectorIndexError(f"vectors must be 1-D or 2-D, got {matrix.ndim}-D")

        if matrix.shape[1] != dimension:
            raise VectorIndexError(
                f"Vector dimension {matrix.shape[1]} does not match expected dimension {dimension}"
            )

        if count is not None:
            if count < 0 or count > matrix.shape[0] or count > id_array.shape[0]:
                raise VectorIndexError(
                    f"count {count} exceeds supplied data ({matrix.shape[0]} vectors, {id_array.shape[0]} ids)"
                )
            matrix = matrix[:count]
            id_array = id_array[:count]

        if matrix.shape[0] != id_array.shape[0]:
            raise VectorIndexError(f"vector and id count mismatch: {matrix.shape[0]} vs {id_array.shape[0]}")

        return cls(vectors=np.ascontiguousarray(matrix), ids=np.ascontiguousarray(id_array))

    def __len__(self) -> int:
        return int(self.ids.shape[0])

    @property
    def dimension(self) -> int:
        return int(self.vectors.shape[1])

    def head(self, n: int) -> np.ndarray:
        """First n vectors, used as the training sample."""
        return self.vectors[:n]


@dataclass(frozen=True)
class SearchHit:
    """A single (id, distance) pair."""

    id: int
    distance: float


@dataclass
class SearchResult:
    """Hits ordered by ascending distance, ties broken by smaller id."""

    hits: List[SearchHit] = field(default_factory=list)

    @classmethod
    def from_arrays(cls, ids: Sequence[int], distances: Sequence[float]) -> "SearchResult":
        return cls([SearchHit(int(i), float(d)) for i, d in zip(ids, distances)])

    @property
    def ids(self) -> List[int]:
        return [hit.id for hit in self.hits]

    @property
    def distances(self) -> List[float]:
        return [hit.distance for hit in self.hits]

    @property
    def count(self) -> int:
        return len(self.hits)

    def __len__(self) -> int:
        return len(self.hits)

    def __iter__(self) -> Iterator[SearchHit]:
        return iter(self.hits)

    def clear(self) -> None:
        self.hits = []
