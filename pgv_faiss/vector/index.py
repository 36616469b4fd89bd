"""
Capability interface shared by every index backend, plus the exact-scan numpy backend.
"""

import io
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import numpy as np

from ..core.schema import IndexFamily
from .types import VectorBatch


class IVectorIndex(ABC):
    """Abstract interface for an index structure: add, search, train, serialize."""

    backend = "abstract"

    def __init__(self, family: IndexFamily, dimension: int):
        self.family = family
        self.dimension = dimension

    @property
    @abstractmethod
    def ntotal(self) -> int:
        """Number of vectors held."""
        pass

    @property
    @abstractmethod
    def is_trained(self) -> bool:
        """Whether the structure can accept add/search calls."""
        pass

    @abstractmethod
    def train(self, vectors: np.ndarray) -> None:
        """Learn structure statistics from an (n, d) float32 sample."""
        pass

    @abstractmethod
    def add(self, batch: VectorBatch) -> None:
        """Append a validated batch."""
        pass

    @abstractmethod
    def search(self, queries: np.ndarray, k: int,
               lists: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
        """Return (distances, labels), each (nq, k); missing slots hold label -1.

        `lists` overrides the number of inverted lists visited for this call only.
        Structures without inverted lists ignore it.
        """
        pass

    @abstractmethod
    def to_bytes(self) -> bytes:
        """Encode the full internal state as the snapshot payload."""
        pass

    @classmethod
    @abstractmethod
    def from_bytes(cls, payload: bytes, header: Dict[str, Any], gpu_context=None) -> "IVectorIndex":
        """Rebuild an index from a snapshot payload and its metadata header."""
        pass

    def release(self) -> None:
        """Drop native resources held by the structure."""
        pass

    @property
    def on_gpu(self) -> bool:
        return False

    @property
    def cluster_count(self) -> Optional[int]:
        return None

    @property
    def visited_lists(self) -> Optional[int]:
        """Inverted lists scanned per query by default, or None for exhaustive structures."""
        return None

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "family": self.family.value,
            "dimension": self.dimension,
            "ntotal": self.ntotal,
            "on_gpu": self.on_gpu,
            "cluster_count": self.cluster_count,
        }


class NumpyBruteForceIndex(IVectorIndex):
    """Exact squared-Euclidean scan over every stored vector.

    Satisfies the same contract as the faiss backend for all families. Inverted-file
    handles still pass through the training gate, but there are no statistics to learn.
    """

    backend = "numpy"

    def __init__(self, family: IndexFamily, dimension: int):
        super().__init__(family, dimension)
        self._vectors = np.empty((0, dimension), dtype=np.float32)
        self._ids = np.empty(0, dtype=np.int64)
        self._trained = not family.requires_training

    @property
    def ntotal(self) -> int:
        return int(self._ids.shape[0])

    @property
    def is_trained(self) -> bool:
        return self._trained

    def train(self, vectors: np.ndarray) -> None:
        self._trained = True

    def add(self, batch: VectorBatch) -> None:
        if len(batch) == 0:
            return
        self._vectors = np.vstack([self._vectors, batch.vectors])
        self._ids = np.concatenate([self._ids, batch.ids])

    def search(self, queries: np.ndarray, k: int,
               lists: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
        nq = queries.shape[0]
        distances = np.full((nq, k), np.inf, dtype=np.float32)
        labels = np.full((nq, k), -1, dtype=np.int64)
        if self.ntotal == 0:
            return distances, labels

        for row, query in enumerate(queries):
            diff = self._vectors - query
            scores = np.einsum("ij,ij->i", diff, diff)
            # Sort by distance, then by id
            order = np.lexsort((self._ids, scores))[:k]
            distances[row, :len(order)] = scores[order]
            labels[row, :len(order)] = self._ids[order]
        return distances, labels

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        np.savez(buffer, vectors=self._vectors, ids=self._ids, trained=np.array(self._trained))
        return buffer.getvalue()

    @classmethod
    def from_bytes(cls, payload: bytes, header: Dict[str, Any], gpu_context=None) -> "NumpyBruteForceIndex":
        family = IndexFamily.lookup(header["family"])
        dimension = int(header["dimension"])
        with np.load(io.BytesIO(payload), allow_pickle=False) as data:
            vectors = np.asarray(data["vectors"], dtype=np.float32)
            ids = np.asarray(data["ids"], dtype=np.int64)
            trained = bool(data["trained"])

        if vectors.ndim != 2 or vectors.shape[1] != dimension or vectors.shape[0] != ids.shape[0]:
            raise ValueError(f"payload shape {vectors.shape} inconsistent with dimension {dimension}")

        index = cls(family, dimension)
        index._vectors = np.ascontiguousarray(vectors)
        index._ids = ids
        index._trained = trained
        return index

    def release(self) -> None:
        self._vectors = np.empty((0, self.dimension), dtype=np.float32)
        self._ids = np.empty(0, dtype=np.int64)
