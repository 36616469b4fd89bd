"""
FAISS-backed implementation of IVectorIndex for the Flat, inverted-file and graph families.
"""

import math
from typing import Any, Dict, Optional, Tuple

import faiss
import numpy as np

from ..core.config import (
    DEFAULT_EXPECTED_SIZE,
    GRAPH_EF_CONSTRUCTION,
    GRAPH_OUT_DEGREE,
    MAX_CENTROIDS,
)
from ..core.schema import IndexFamily
from ..util.logging import logger
from .index import IVectorIndex
from .resources import GpuContext
from .types import VectorBatch


def cluster_count(expected_size: Optional[int] = None) -> int:
    """Inverted-file cluster count: min(4 * sqrt(expected_size), 65536)."""
    size = DEFAULT_EXPECTED_SIZE if expected_size is None else int(expected_size)
    return max(1, min(4 * int(math.sqrt(size)), MAX_CENTROIDS))


def build_cpu_structure(family: IndexFamily, dimension: int, nlist: Optional[int] = None) -> "faiss.Index":
    """Construct a new, untrained CPU structure for `family` (squared L2 metric)."""
    if family is IndexFamily.FLAT:
        return faiss.IndexIDMap2(faiss.IndexFlatL2(dimension))

    if family is IndexFamily.INVERTED_FILE:
        quantizer = faiss.IndexFlatL2(dimension)
        return faiss.IndexIVFFlat(quantizer, dimension, int(nlist or cluster_count()), faiss.METRIC_L2)

    if family is IndexFamily.GRAPH:
        base = faiss.IndexHNSWFlat(dimension, GRAPH_OUT_DEGREE)
        base.hnsw.efConstruction = GRAPH_EF_CONSTRUCTION
        return faiss.IndexIDMap2(base)

    raise ValueError(f"Unsupported index family: {family}")


class FaissVectorIndex(IVectorIndex):
    """FAISS structure, optionally cloned onto a GPU context."""

    backend = "faiss"

    def __init__(self, family: IndexFamily, dimension: int, index: "faiss.Index",
                 nlist: Optional[int] = None, search_breadth: int = 1,
                 gpu_context: Optional[GpuContext] = None):
        super().__init__(family, dimension)
        self._index = index
        self._nlist = nlist
        self._search_breadth = search_breadth
        self._gpu_context = None
        if gpu_context is not None and family.supports_gpu:
            self._promote(gpu_context)
        self._apply_search_breadth()

    @classmethod
    def create(cls, family: IndexFamily, dimension: int, search_breadth: int,
               expected_size: Optional[int] = None,
               gpu_context: Optional[GpuContext] = None) -> "FaissVectorIndex":
        nlist = cluster_count(expected_size) if family is IndexFamily.INVERTED_FILE else None
        structure = build_cpu_structure(family, dimension, nlist)
        return cls(family, dimension, structure, nlist, search_breadth, gpu_context)

    @property
    def ntotal(self) -> int:
        return int(self._index.ntotal) if self._index is not None else 0

    @property
    def is_trained(self) -> bool:
        return bool(self._index is not None and self._index.is_trained)

    @property
    def on_gpu(self) -> bool:
        return self._gpu_context is not None

    @property
    def cluster_count(self) -> Optional[int]:
        return self._nlist

    @property
    def search_breadth(self) -> int:
        return self._search_breadth

    @property
    def visited_lists(self) -> Optional[int]:
        if self.family is not IndexFamily.INVERTED_FILE:
            return None
        return int(min(self._search_breadth, self._nlist or self._search_breadth))

    def train(self, vectors: np.ndarray) -> None:
        if self.family is not IndexFamily.INVERTED_FILE or self._index.is_trained:
            return

        n = int(vectors.shape[0])
        if n < self._nlist:
            # k-means needs at least one point per centroid
            shrunk = max(1, min(cluster_count(n), n))
            logger.debug(f"Shrinking inverted-file cluster count from {self._nlist} to {shrunk} for {n} training vectors")
            self._rebuild(shrunk)

        self._index.train(np.ascontiguousarray(vectors, dtype=np.float32))

    def add(self, batch: VectorBatch) -> None:
        if len(batch) == 0:
            return
        self._index.add_with_ids(batch.vectors, batch.ids)

    def search(self, queries: np.ndarray, k: int,
               lists: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
        x = np.ascontiguousarray(queries, dtype=np.float32)
        if lists is None or self.family is not IndexFamily.INVERTED_FILE:
            return self._index.search(x, k)

        lists = max(1, min(int(lists), self._nlist or int(lists)))
        if not self.on_gpu:
            params = faiss.SearchParametersIVF(nprobe=lists)
            return self._index.search(x, k, params=params)

        # GPU inverted-file structures take no per-call parameters
        self._set_nprobe(lists)
        try:
            return self._index.search(x, k)
        finally:
            self._apply_search_breadth()

    def to_bytes(self) -> bytes:
        cpu_index = faiss.index_gpu_to_cpu(self._index) if self.on_gpu else self._index
        return faiss.serialize_index(cpu_index).tobytes()

    @classmethod
    def from_bytes(cls, payload: bytes, header: Dict[str, Any], gpu_context=None) -> "FaissVectorIndex":
        family = IndexFamily.lookup(header["family"])
        dimension = int(header["dimension"])
        structure = faiss.deserialize_index(np.frombuffer(payload, dtype=np.uint8))
        if structure.d != dimension:
            raise ValueError(f"payload dimension {structure.d} does not match header dimension {dimension}")

        nlist = header.get("cluster_count") or getattr(structure, "nlist", None)
        return cls(family, dimension, structure,
                   nlist=int(nlist) if nlist is not None else None,
                   search_breadth=int(header.get("search_breadth", 1)),
                   gpu_context=gpu_context)

    def release(self) -> None:
        self._index = None
        self._gpu_context = None

    def _rebuild(self, nlist: int) -> None:
        self._nlist = nlist
        self._index = build_cpu_structure(self.family, self.dimension, nlist)
        if self._gpu_context is not None:
            self._index = self._gpu_context.clone_to_gpu(self._index)
        self._apply_search_breadth()

    def _promote(self, gpu_context: GpuContext) -> None:
        self._index = gpu_context.clone_to_gpu(self._index)
        self._gpu_context = gpu_context

    def _apply_search_breadth(self) -> None:
        if self.family is IndexFamily.INVERTED_FILE:
            self._set_nprobe(self.visited_lists)

    def _set_nprobe(self, nprobe: int) -> None:
        if hasattr(self._index, "nprobe"):
            self._index.nprobe = nprobe
        elif hasattr(self._index, "setNumProbes"):
            self._index.setNumProbes(nprobe)
